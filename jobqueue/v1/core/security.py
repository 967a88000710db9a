import secrets
from dataclasses import dataclass

from fastapi import Depends, Header

from jobqueue.config.settings import AuthMode, Settings, SettingsDep
from jobqueue.v1.core.exceptions import UnauthorizedError


@dataclass
class Principal:
    """Represents the caller of a trigger endpoint."""

    subject: str
    roles: list[str]


def extract_token(authorization: str | None) -> str | None:
    """Accept ``Bearer <token>`` or the bare token."""
    if not authorization or not authorization.strip():
        return None
    value = authorization.strip()
    scheme, _, rest = value.partition(" ")
    if scheme.lower() == "bearer":
        return rest.strip() or None
    return value


async def get_principal(
    authorization: str | None = Header(None, alias="Authorization"),
    settings: Settings = SettingsDep,
) -> Principal:
    """
    Dependency injection function to get the current principal.

    Behavior based on AUTH_MODE:
    - none: Every caller is let through (development only)
    - secret: Caller must present CRON_SECRET in the Authorization header
    """
    if settings.auth_mode == AuthMode.NONE:
        return Principal(subject="anonymous", roles=["admin"])
    elif settings.auth_mode == AuthMode.SECRET:
        token = extract_token(authorization)
        if token is None or settings.cron_secret is None:
            raise UnauthorizedError()

        expected = settings.cron_secret.get_secret_value()
        if not secrets.compare_digest(token.encode(), expected.encode()):
            raise UnauthorizedError()

        return Principal(subject="cron", roles=["admin"])
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


# Convenience type alias for dependency injection
PrincipalDep = Depends(get_principal)
