"""CORS configuration with environment-aware validation."""

import logging
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEVELOPMENT_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:3001",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:3001",
]


class CORSConfigurationError(Exception):
    """Raised when CORS configuration is invalid or insecure."""


def parse_comma_separated_list(value: str | list[str] | None) -> list[str]:
    """Split a comma-separated string (or clean a list), dropping blanks."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [v.strip() for v in value if v.strip()]


def normalize_origin(origin: str) -> str:
    """Validate an origin URL and strip its trailing slash.

    Raises:
        CORSConfigurationError: If origin is not a scheme://host URL.

    """
    origin = origin.strip()
    if origin == "*":
        return origin

    parsed = urlparse(origin)
    if not parsed.scheme or not parsed.netloc:
        raise CORSConfigurationError(f"Invalid origin URL: {origin}")
    return origin.rstrip("/")


class CORSConfiguration:
    """Validated CORS settings for Starlette's CORSMiddleware.

    Rules:
    1. Credentials are never combined with the "*" wildcard.
    2. The wildcard is only accepted in development and test.
    3. Production requires at least one explicit origin.
    """

    allow_methods = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    allow_headers = ["authorization", "content-type"]

    def __init__(
        self,
        allow_origins: str | list[str] | None = None,
        allow_credentials: bool = True,
        environment: str = "development",
    ):
        self.environment = environment.lower()
        self.allow_credentials = allow_credentials

        origins = parse_comma_separated_list(allow_origins)
        if not origins and self.environment in ("development", "test"):
            origins = list(DEVELOPMENT_ORIGINS)
        self.allow_origins = [normalize_origin(o) for o in origins]

        self._validate_security_rules()

    def _validate_security_rules(self) -> None:
        has_wildcard = "*" in self.allow_origins

        if self.allow_credentials and has_wildcard:
            raise CORSConfigurationError(
                "Cannot enable credentials with wildcard origins (*). Provide explicit allowed origins instead."
            )

        if has_wildcard and self.environment not in ("development", "test"):
            raise CORSConfigurationError(f"Wildcard origins (*) are not allowed in {self.environment} environment.")

        if self.environment == "production" and not self.allow_origins:
            raise CORSConfigurationError("Production environment requires explicit allowed origins.")

        if self.environment == "staging" and not self.allow_origins:
            logger.warning("Staging environment detected with no explicit CORS origins.")

    def get_middleware_config(self) -> dict:
        """Keyword arguments for CORSMiddleware."""
        return {
            "allow_origins": self.allow_origins,
            "allow_credentials": self.allow_credentials,
            "allow_methods": self.allow_methods,
            "allow_headers": self.allow_headers,
        }

    def log_configuration(self) -> None:
        logger.info(
            f"CORS configuration ({self.environment}): origins={self.allow_origins}, "
            f"credentials={self.allow_credentials}"
        )
