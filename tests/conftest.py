"""Test configuration and fixtures.

Each test runs against its own SQLite database file:
1. The schema is created from Base.metadata at the start of the test
2. HTTP requests get their own session from the same engine, committed at the end of the request
3. Fixtures that write (make_user) commit, so requests see the data
4. Outgoing email is captured by patching aiosmtplib.send
"""

import re
from collections.abc import AsyncGenerator
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load test environment variables before the settings object is created
test_env_path = Path(__file__).parent.parent / ".env.test"
load_dotenv(test_env_path, override=True)

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

import src.main as main_module  # noqa: E402
from src.config.roles import UserRole  # noqa: E402
from src.database.base import Base  # noqa: E402
from src.database.dependencies import get_db_session  # noqa: E402
from src.features.auth.tokens import TokenService  # noqa: E402
from src.features.user.models import User  # noqa: E402
from src.main import app  # noqa: E402

API = "/api/v1"
DEFAULT_PASSWORD = "abc12345"

TOKEN_IN_LINK = re.compile(r"token=([A-Za-z0-9_\-\.]+)")


# Database Setup - Function Scope (fresh file per test)


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """Create an engine on a fresh SQLite file with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Session for arranging data and asserting on it directly in tests."""
    async with session_factory() as async_session:
        yield async_session


# Mock Database Initialization


@pytest.fixture(autouse=True)
def mock_db_initialization(monkeypatch):
    """Mock init_db and close_db so lifespan doesn't touch the configured database."""

    async def mock_init_db():
        pass

    async def mock_close_db():
        pass

    monkeypatch.setattr(main_module, "init_db", mock_init_db)
    monkeypatch.setattr(main_module, "close_db", mock_close_db)


# FastAPI Client & Dependency Overrides


@pytest_asyncio.fixture(autouse=True)
async def override_get_db_session(session_factory: async_sessionmaker[AsyncSession]):
    """Serve every request from the test database, one session per request."""

    async def _get_test_session():
        async with session_factory() as request_session:
            try:
                yield request_session
                await request_session.commit()
            except Exception:
                await request_session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _get_test_session
    yield
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient]:
    """Unauthenticated async HTTP test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Email capture


@pytest.fixture(autouse=True)
def mail_outbox():
    """Patch SMTP delivery; the mock's calls are the sent messages."""
    with patch("aiosmtplib.send", new_callable=AsyncMock) as mock_send:
        yield mock_send


@pytest.fixture
def sent_messages(mail_outbox):
    """Return the EmailMessage objects handed to SMTP so far."""

    def _messages(to: str | None = None, subject: str | None = None):
        messages = [c.args[0] for c in mail_outbox.call_args_list]
        if to is not None:
            messages = [m for m in messages if m["To"] == to]
        if subject is not None:
            messages = [m for m in messages if m["Subject"] == subject]
        return messages

    return _messages


@pytest.fixture
def emailed_token(sent_messages):
    """Extract the token from the last matching email's link."""

    def _token(to: str, subject: str) -> str:
        messages = sent_messages(to=to, subject=subject)
        assert messages, f"No '{subject}' email sent to {to}"
        body = messages[-1].get_body(preferencelist=("plain",)).get_content()
        match = TOKEN_IN_LINK.search(body)
        assert match, "No token link in email body"
        return match.group(1)

    return _token


# Test User Factories


@pytest_asyncio.fixture
async def make_user(session: AsyncSession):
    """Factory fixture to create committed test users.

    Usage:
        user = await make_user()                              # defaults
        admin = await make_user(role=UserRole.ADMIN)          # admin
        inactive = await make_user(is_active=False)           # deactivated user
    """
    counter = 0  # Counter for unique email generation

    async def _factory(
        email=None,
        name="Test User",
        password=DEFAULT_PASSWORD,
        role=UserRole.USER,
        **kwargs,
    ) -> User:
        nonlocal counter
        counter += 1

        if email is None:
            email = f"testuser{counter}@example.com"

        user = User(
            email=email,
            name=name,
            hashed_password=User.hash_password(password),
            role=role,
            **kwargs,
        )

        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user

    yield _factory


def bearer(user: User) -> dict[str, str]:
    token, _ = TokenService.issue_access(user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Build an Authorization header with a real access token for a user."""
    return bearer


@pytest_asyncio.fixture
async def auth_client(client: AsyncClient, make_user):
    """Authenticated client with a regular user.

    Returns:
        tuple: (client, user) - the HTTP client carrying a bearer token and the user

    """
    user = await make_user()
    client.headers.update(bearer(user))
    yield client, user


@pytest_asyncio.fixture
async def admin_client(client: AsyncClient, make_user):
    """Same as auth_client but the user has the ADMIN role."""
    user = await make_user(role=UserRole.ADMIN)
    client.headers.update(bearer(user))
    yield client, user
