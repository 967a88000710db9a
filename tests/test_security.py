import pytest

from jobqueue.config.settings import AuthMode, Settings
from jobqueue.v1.core.exceptions import UnauthorizedError
from jobqueue.v1.core.security import Principal, extract_token, get_principal


@pytest.fixture
def secret_settings() -> Settings:
    return Settings(auth_mode=AuthMode.SECRET, cron_secret="s3cret", _env_file=None)


@pytest.mark.asyncio
async def test_get_principal_auth_mode_none():
    """AUTH_MODE=none lets every caller through."""
    settings = Settings(auth_mode=AuthMode.NONE, _env_file=None)

    principal = await get_principal(authorization=None, settings=settings)

    assert isinstance(principal, Principal)
    assert principal.subject == "anonymous"
    assert principal.roles == ["admin"]


@pytest.mark.asyncio
async def test_get_principal_secret_accepts_matching_token(secret_settings):
    principal = await get_principal(authorization="Bearer s3cret", settings=secret_settings)

    assert principal.subject == "cron"


@pytest.mark.asyncio
@pytest.mark.parametrize("authorization", [None, "", "Bearer", "Bearer nope", "s3cret2"])
async def test_get_principal_secret_rejects(secret_settings, authorization):
    with pytest.raises(UnauthorizedError) as exc_info:
        await get_principal(authorization=authorization, settings=secret_settings)
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_get_principal_unknown_auth_mode():
    settings = Settings.model_construct(auth_mode="invalid_mode")

    with pytest.raises(ValueError, match="Unknown auth mode: invalid_mode"):
        await get_principal(authorization=None, settings=settings)


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Bearer abc", "abc"),
        ("bearer abc ", "abc"),
        ("abc", "abc"),
        ("Bearer ", None),
        ("  ", None),
        (None, None),
    ],
)
def test_extract_token(header, expected):
    assert extract_token(header) == expected
