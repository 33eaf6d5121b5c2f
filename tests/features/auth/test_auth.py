"""Tests for the auth feature over HTTP.
Covers: registration, login, refresh rotation, logout, password reset,
email verification, change password and the access token gate.
"""

from datetime import UTC, datetime, timedelta

import aiosmtplib
import jwt
from fastapi import status
from sqlalchemy import select

from src.config.settings import settings
from src.features.auth.ledger import TokenLedger
from src.features.auth.models import Token, TokenKind
from src.features.auth.service import AuthService
from src.features.user.models import User

API = "/api/v1"
PASSWORD = "abc12345"


def refresh_cookie(response) -> str | None:
    """Value of the refreshToken cookie set by a response, if any."""
    for header in response.headers.get_list("set-cookie"):
        if header.startswith("refreshToken="):
            return header.split(";", 1)[0].split("=", 1)[1]
    return None


def refresh_cookie_header(response) -> str:
    return next(h for h in response.headers.get_list("set-cookie") if h.startswith("refreshToken="))


async def register(client, email="a@x.com", password=PASSWORD, **extra):
    return await client.post(f"{API}/auth/register", json={"email": email, "password": password, **extra})


async def login(client, email, password=PASSWORD) -> tuple[str, str]:
    response = await client.post(f"{API}/auth/login", json={"email": email, "password": password})
    assert response.status_code == status.HTTP_200_OK, response.text
    return response.json()["tokens"]["access"]["token"], refresh_cookie(response)


async def rotate(client, refresh_token):
    return await client.post(f"{API}/auth/refresh-tokens", json={"refreshToken": refresh_token})


def signed_token(user_id: int, token_type: str = "access", iat=None, exp=None) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "iat": iat or now,
        "exp": exp or now + timedelta(minutes=5),
        "type": token_type,
        "jti": "test",
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


# Registration


class TestRegister:
    async def test_returns_user_and_access_token(self, client):
        response = await register(client)

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["user"]["email"] == "a@x.com"
        assert data["user"]["isEmailVerified"] is False
        assert data["user"]["role"] == "user"
        assert "hashedPassword" not in data["user"]
        assert data["tokens"]["access"]["token"]
        assert data["tokens"]["access"]["expires"]
        assert "refresh" not in data["tokens"]

    async def test_sets_refresh_cookie(self, client):
        response = await register(client)

        header = refresh_cookie_header(response).lower()
        assert refresh_cookie(response)
        assert "httponly" in header
        assert "samesite=strict" in header
        # Secure only in production
        assert "secure" not in header

    async def test_password_is_hashed(self, client, session):
        await register(client)

        user = (await session.execute(select(User).where(User.email == "a@x.com"))).scalar_one()
        assert user.hashed_password != PASSWORD
        assert user.verify_password(PASSWORD)

    async def test_name_defaults_to_email_local_part(self, client):
        response = await register(client, email="jane.doe@x.com")
        assert response.json()["user"]["name"] == "jane.doe"

    async def test_short_local_part_gets_default_name(self, client):
        response = await register(client, email="a@x.com")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["user"]["name"] == "Customer"

    async def test_long_local_part_is_cut_to_name_limit(self, client):
        local_part = "b" * 60

        response = await register(client, email=f"{local_part}@x.com")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["user"]["name"] == local_part[:50]

    async def test_email_is_normalized(self, client):
        response = await register(client, email="  Mixed@X.COM ")
        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["user"]["email"] == "mixed@x.com"

    async def test_duplicate_email_conflicts(self, client, make_user):
        await make_user(email="taken@x.com")

        response = await register(client, email="taken@x.com")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"] == "Email already taken"

    async def test_weak_password_rejected(self, client):
        response = await register(client, password="abcdefgh")
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    async def test_sends_verification_email(self, client, sent_messages):
        await register(client)
        assert len(sent_messages(to="a@x.com", subject="Email Verification")) == 1

    async def test_succeeds_when_email_delivery_fails(self, client, mail_outbox):
        mail_outbox.side_effect = aiosmtplib.SMTPException("server down")

        response = await register(client)

        assert response.status_code == status.HTTP_201_CREATED


# Login


class TestLogin:
    async def test_register_then_login(self, client):
        await register(client)

        response = await client.post(f"{API}/auth/login", json={"email": "a@x.com", "password": PASSWORD})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["user"]["email"] == "a@x.com"
        assert response.json()["tokens"]["access"]["token"]
        assert refresh_cookie(response)

    async def test_sets_last_login(self, client, make_user):
        user = await make_user()
        response = await client.post(f"{API}/auth/login", json={"email": user.email, "password": PASSWORD})
        assert response.json()["user"]["lastLoginAt"] is not None

    async def test_wrong_password_and_unknown_email_look_the_same(self, client, make_user):
        user = await make_user()

        wrong = await client.post(f"{API}/auth/login", json={"email": user.email, "password": "wrong1234"})
        unknown = await client.post(f"{API}/auth/login", json={"email": "nobody@x.com", "password": "wrong1234"})

        assert wrong.status_code == unknown.status_code == status.HTTP_401_UNAUTHORIZED
        assert wrong.json() == unknown.json() == {"detail": "Incorrect email or password"}

    async def test_deactivated_account_rejected(self, client, make_user):
        user = await make_user(is_active=False)

        response = await client.post(f"{API}/auth/login", json={"email": user.email, "password": PASSWORD})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_no_lockout_after_failed_attempts(self, client, make_user):
        user = await make_user()
        for _ in range(3):
            response = await client.post(f"{API}/auth/login", json={"email": user.email, "password": "wrong1234"})
            assert response.status_code == status.HTTP_401_UNAUTHORIZED

        response = await client.post(f"{API}/auth/login", json={"email": user.email, "password": PASSWORD})

        assert response.status_code == status.HTTP_200_OK


# Refresh rotation


class TestRefreshTokens:
    async def test_rotation_issues_new_pair(self, client, make_user):
        user = await make_user()
        _, refresh_token = await login(client, user.email)

        response = await rotate(client, refresh_token)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["tokens"]["access"]["token"]
        new_refresh = refresh_cookie(response)
        assert new_refresh and new_refresh != refresh_token

    async def test_replay_rejected(self, client, make_user):
        user = await make_user()
        _, refresh_token = await login(client, user.email)
        assert (await rotate(client, refresh_token)).status_code == status.HTTP_200_OK

        response = await rotate(client, refresh_token)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Please authenticate"

    async def test_rotated_token_is_removed_from_ledger(self, client, session, make_user):
        user = await make_user()
        _, refresh_token = await login(client, user.email)
        await rotate(client, refresh_token)

        result = await session.execute(select(Token).where(Token.token == refresh_token))
        assert result.scalar_one_or_none() is None

    async def test_refresh_token_from_cookie(self, client, make_user):
        user = await make_user()
        _, refresh_token = await login(client, user.email)
        client.cookies.clear()

        response = await client.post(
            f"{API}/auth/refresh-tokens", headers={"Cookie": f"refreshToken={refresh_token}"}
        )

        assert response.status_code == status.HTTP_200_OK

    async def test_access_token_cannot_refresh(self, client, make_user):
        user = await make_user()
        access_token, _ = await login(client, user.email)

        response = await rotate(client, access_token)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_missing_token(self, client):
        response = await client.post(f"{API}/auth/refresh-tokens", json={})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_deactivated_user_cannot_refresh(self, client, session, make_user):
        user = await make_user()
        _, refresh_token = await login(client, user.email)
        user.is_active = False
        await session.commit()

        response = await rotate(client, refresh_token)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


# Logout


class TestLogout:
    async def test_invalidates_only_that_session(self, client, make_user):
        user = await make_user()
        _, first = await login(client, user.email)
        _, second = await login(client, user.email)

        response = await client.post(f"{API}/auth/logout", json={"refreshToken": first})

        assert response.status_code == status.HTTP_200_OK
        assert (await rotate(client, first)).status_code == status.HTTP_401_UNAUTHORIZED
        assert (await rotate(client, second)).status_code == status.HTTP_200_OK

    async def test_clears_cookie(self, client, make_user):
        user = await make_user()
        _, refresh_token = await login(client, user.email)

        response = await client.post(f"{API}/auth/logout", json={"refreshToken": refresh_token})

        assert "max-age=0" in refresh_cookie_header(response).lower()

    async def test_unknown_token_not_found(self, client):
        response = await client.post(f"{API}/auth/logout", json={"refreshToken": "not-a-token"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"] == "Token not found"

    async def test_without_token_clears_cookie(self, client):
        response = await client.post(f"{API}/auth/logout", json={})

        assert response.status_code == status.HTTP_200_OK
        assert "max-age=0" in refresh_cookie_header(response).lower()


# Forgot / reset password


class TestPasswordReset:
    async def test_forgot_password_same_response_for_unknown_email(self, client, make_user, sent_messages):
        user = await make_user()

        known = await client.post(f"{API}/auth/forgot-password", json={"email": user.email})
        unknown = await client.post(f"{API}/auth/forgot-password", json={"email": "ghost@x.com"})

        assert known.status_code == unknown.status_code == status.HTTP_200_OK
        assert known.json() == unknown.json()
        assert len(sent_messages(subject="Reset password")) == 1

    async def test_forgot_password_sends_nothing_before_responding(self, session, make_user, mail_outbox):
        user = await make_user()

        known = await AuthService.forgot_password(session, user.email)
        unknown = await AuthService.forgot_password(session, "ghost@x.com")

        assert unknown is None
        assert known[0] == user.email
        assert await TokenLedger.find_valid(session, known[1], TokenKind.RESET_PASSWORD) is not None
        mail_outbox.assert_not_called()

    async def test_forgot_password_ignores_delivery_failure(self, client, make_user, mail_outbox):
        user = await make_user()
        mail_outbox.side_effect = aiosmtplib.SMTPException("server down")

        response = await client.post(f"{API}/auth/forgot-password", json={"email": user.email})

        assert response.status_code == status.HTTP_200_OK
        mail_outbox.assert_awaited_once()

    async def test_reset_flow(self, client, make_user, emailed_token):
        user = await make_user()
        _, old_refresh = await login(client, user.email)
        await client.post(f"{API}/auth/forgot-password", json={"email": user.email})
        token = emailed_token(user.email, "Reset password")

        response = await client.post(f"{API}/auth/reset-password", params={"token": token}, json={"password": "newpass99"})

        assert response.status_code == status.HTTP_200_OK
        assert (await rotate(client, old_refresh)).status_code == status.HTTP_401_UNAUTHORIZED
        failed = await client.post(f"{API}/auth/login", json={"email": user.email, "password": PASSWORD})
        assert failed.status_code == status.HTTP_401_UNAUTHORIZED
        _, fresh_refresh = await login(client, user.email, "newpass99")
        assert (await rotate(client, fresh_refresh)).status_code == status.HTTP_200_OK

    async def test_reset_token_is_single_use(self, client, make_user, emailed_token):
        user = await make_user()
        await client.post(f"{API}/auth/forgot-password", json={"email": user.email})
        token = emailed_token(user.email, "Reset password")
        await client.post(f"{API}/auth/reset-password", params={"token": token}, json={"password": "newpass99"})

        response = await client.post(f"{API}/auth/reset-password", params={"token": token}, json={"password": "other999"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Password reset failed"

    async def test_invalid_token(self, client):
        response = await client.post(
            f"{API}/auth/reset-password", params={"token": "garbage"}, json={"password": "newpass99"}
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Password reset failed"

    async def test_verify_email_token_is_not_a_reset_token(self, client, emailed_token):
        await register(client)
        token = emailed_token("a@x.com", "Email Verification")

        response = await client.post(f"{API}/auth/reset-password", params={"token": token}, json={"password": "newpass99"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


# Email verification


class TestVerifyEmail:
    async def test_register_verify_me(self, client, emailed_token, sent_messages):
        registered = await register(client)
        headers = {"Authorization": f"Bearer {registered.json()['tokens']['access']['token']}"}

        me = await client.get(f"{API}/auth/me", headers=headers)
        assert me.status_code == status.HTTP_200_OK
        assert me.json()["isEmailVerified"] is False

        token = emailed_token("a@x.com", "Email Verification")
        response = await client.post(f"{API}/auth/verify-email", params={"token": token})
        assert response.status_code == status.HTTP_200_OK

        me = await client.get(f"{API}/auth/me", headers=headers)
        assert me.json()["isEmailVerified"] is True
        assert len(sent_messages(to="a@x.com", subject="Welcome to Storefront")) == 1

    async def test_token_cannot_be_reused(self, client, emailed_token):
        await register(client)
        token = emailed_token("a@x.com", "Email Verification")
        await client.post(f"{API}/auth/verify-email", params={"token": token})

        response = await client.post(f"{API}/auth/verify-email", params={"token": token})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Email verification failed"

    async def test_verification_succeeds_when_welcome_email_fails(self, client, emailed_token, mail_outbox):
        await register(client)
        token = emailed_token("a@x.com", "Email Verification")
        mail_outbox.side_effect = aiosmtplib.SMTPException("server down")

        response = await client.post(f"{API}/auth/verify-email", params={"token": token})

        assert response.status_code == status.HTTP_200_OK

    async def test_resend_verification_email(self, auth_client, sent_messages):
        client, user = auth_client

        response = await client.post(f"{API}/auth/send-verification-email")

        assert response.status_code == status.HTTP_200_OK
        assert len(sent_messages(to=user.email, subject="Email Verification")) == 1

    async def test_resend_reports_delivery_failure(self, auth_client, mail_outbox):
        client, _ = auth_client
        mail_outbox.side_effect = aiosmtplib.SMTPException("server down")

        response = await client.post(f"{API}/auth/send-verification-email")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    async def test_resend_requires_authentication(self, client):
        response = await client.post(f"{API}/auth/send-verification-email")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED


# Change password


class TestChangePassword:
    async def test_wrong_current_password(self, auth_client):
        client, _ = auth_client

        response = await client.post(
            f"{API}/auth/change-password", json={"currentPassword": "wrong1234", "newPassword": "newpass99"}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Current password is incorrect"

    async def test_ends_existing_sessions(self, client, make_user):
        user = await make_user()
        access_token, old_refresh = await login(client, user.email)

        response = await client.post(
            f"{API}/auth/change-password",
            json={"currentPassword": PASSWORD, "newPassword": "newpass99"},
            headers={"Authorization": f"Bearer {access_token}"},
        )

        assert response.status_code == status.HTTP_200_OK
        assert (await rotate(client, old_refresh)).status_code == status.HTTP_401_UNAUTHORIZED
        _, fresh_refresh = await login(client, user.email, "newpass99")
        assert (await rotate(client, fresh_refresh)).status_code == status.HTTP_200_OK

    async def test_weak_new_password(self, auth_client):
        client, _ = auth_client

        response = await client.post(
            f"{API}/auth/change-password", json={"currentPassword": PASSWORD, "newPassword": "short"}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


# Access token gate


class TestAccessTokenGate:
    async def test_missing_token(self, client):
        response = await client.get(f"{API}/auth/me")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.headers["www-authenticate"] == "Bearer"

    async def test_garbage_token(self, client):
        response = await client.get(f"{API}/auth/me", headers={"Authorization": "Bearer garbage"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Invalid token"

    async def test_expired_token(self, client, make_user):
        user = await make_user()
        past = datetime.now(UTC) - timedelta(hours=1)
        token = signed_token(user.id, iat=past, exp=past + timedelta(minutes=1))

        response = await client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Token has expired"

    async def test_refresh_token_is_not_an_access_token(self, client, make_user):
        user = await make_user()
        _, refresh_token = await login(client, user.email)

        response = await client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {refresh_token}"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_access_token_from_cookie(self, client, make_user):
        user = await make_user()
        access_token, _ = await login(client, user.email)

        response = await client.get(f"{API}/auth/me", headers={"Cookie": f"accessToken={access_token}"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["id"] == user.id

    async def test_rejects_token_issued_before_password_change(self, client, session, make_user):
        user = await make_user()
        token = signed_token(user.id, iat=datetime.now(UTC) - timedelta(minutes=2))
        user.password_changed_at = datetime.now(UTC) - timedelta(minutes=1)
        await session.commit()

        response = await client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_accepts_token_issued_after_password_change(self, client, session, make_user):
        user = await make_user()
        user.password_changed_at = datetime.now(UTC) - timedelta(minutes=2)
        await session.commit()
        token = signed_token(user.id, iat=datetime.now(UTC) - timedelta(minutes=1))

        response = await client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == status.HTTP_200_OK

    async def test_deactivated_user(self, client, auth_headers, make_user):
        user = await make_user(is_active=False)

        response = await client.get(f"{API}/auth/me", headers=auth_headers(user))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_deleted_user(self, client, session, auth_headers, make_user):
        user = await make_user()
        headers = auth_headers(user)
        await session.delete(user)
        await session.commit()

        response = await client.get(f"{API}/auth/me", headers=headers)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


# Own profile


class TestUpdateMe:
    async def test_update_profile(self, auth_client):
        client, _ = auth_client

        response = await client.patch(f"{API}/auth/me", json={"name": "New Name", "phone": "+15550100"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["name"] == "New Name"
        assert response.json()["phone"] == "+15550100"

    async def test_changing_email_resets_verification(self, client, auth_headers, make_user):
        user = await make_user(is_email_verified=True)

        response = await client.patch(f"{API}/auth/me", json={"email": "new@x.com"}, headers=auth_headers(user))

        assert response.json()["email"] == "new@x.com"
        assert response.json()["isEmailVerified"] is False

    async def test_old_verification_link_does_not_verify_new_email(self, client, emailed_token):
        registered = await register(client, email="old@x.com")
        headers = {"Authorization": f"Bearer {registered.json()['tokens']['access']['token']}"}
        old_token = emailed_token("old@x.com", "Email Verification")

        await client.patch(f"{API}/auth/me", json={"email": "new@x.com"}, headers=headers)
        response = await client.post(f"{API}/auth/verify-email", params={"token": old_token})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        me = await client.get(f"{API}/auth/me", headers=headers)
        assert me.json()["isEmailVerified"] is False

    async def test_new_email_gets_verification_link(self, client, emailed_token):
        registered = await register(client, email="old@x.com")
        headers = {"Authorization": f"Bearer {registered.json()['tokens']['access']['token']}"}

        await client.patch(f"{API}/auth/me", json={"email": "new@x.com"}, headers=headers)
        new_token = emailed_token("new@x.com", "Email Verification")
        response = await client.post(f"{API}/auth/verify-email", params={"token": new_token})

        assert response.status_code == status.HTTP_200_OK
        me = await client.get(f"{API}/auth/me", headers=headers)
        assert me.json()["email"] == "new@x.com"
        assert me.json()["isEmailVerified"] is True

    async def test_unchanged_email_sends_nothing(self, auth_client, mail_outbox):
        client, user = auth_client

        await client.patch(f"{API}/auth/me", json={"email": user.email, "name": "Same Email"})

        mail_outbox.assert_not_called()

    async def test_cannot_set_role(self, auth_client):
        client, _ = auth_client

        response = await client.patch(f"{API}/auth/me", json={"role": "admin"})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    async def test_email_conflict(self, auth_client, make_user):
        client, _ = auth_client
        other = await make_user()

        response = await client.patch(f"{API}/auth/me", json={"email": other.email})

        assert response.status_code == status.HTTP_409_CONFLICT


class TestLedgerRecords:
    async def test_login_records_client_info(self, client, session, make_user):
        user = await make_user()
        _, refresh_token = await login(client, user.email)

        record = (await session.execute(select(Token).where(Token.token == refresh_token))).scalar_one()

        assert record.kind == TokenKind.REFRESH
        assert record.user_id == user.id
        assert record.ip_address is not None
        assert record.expires_at > datetime.now(UTC) + timedelta(days=settings.refresh_token_expire_days - 1)
