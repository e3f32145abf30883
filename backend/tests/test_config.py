import pytest
from pydantic import ValidationError

from sessionguard.config import Settings


def _settings(**overrides):
    base = {"DATABASE_URL": "sqlite:///:memory:", "_env_file": None}
    base.update(overrides)
    return Settings(**base)


def test_defaults_keep_lifetime_ordering():
    s = _settings()
    assert s.ROTATION_GRACE_SECONDS == 10.0
    assert s.ACCESS_TOKEN_EXPIRE_MINUTES == 5
    assert s.REFRESH_TOKEN_EXPIRE_DAYS == 15


@pytest.mark.parametrize("overrides", [
    {"ROTATION_GRACE_SECONDS": 300},
    {"ROTATION_GRACE_SECONDS": -1},
    {"ACCESS_TOKEN_EXPIRE_MINUTES": 0},
    {"ACCESS_TOKEN_EXPIRE_MINUTES": 60 * 24 * 30, "REFRESH_TOKEN_EXPIRE_DAYS": 15},
])
def test_lifetime_ordering_is_enforced(overrides):
    with pytest.raises(ValidationError):
        _settings(**overrides)


def test_signing_secrets_fall_back_to_secret_key():
    s = _settings(SECRET_KEY="shared", REFRESH_SECRET_KEY="refresh-only")
    assert s.access_secret == "shared"
    assert s.refresh_secret == "refresh-only"


def test_cors_origins_accept_csv_and_json():
    assert _settings(CORS_ORIGINS="http://a.test, http://b.test").CORS_ORIGINS == ["http://a.test", "http://b.test"]
    assert _settings(CORS_ORIGINS='["http://c.test"]').CORS_ORIGINS == ["http://c.test"]


def test_database_url_built_from_parts():
    s = Settings(_env_file=None, DATABASE_URL="", POSTGRES_PASSWORD="p@ss word", POSTGRES_HOST="db")
    assert s.get_database_url() == "postgresql://sessionguard:p%40ss+word@db:5432/sessionguard_db"


def test_production_rejects_default_secret():
    with pytest.raises(ValueError):
        _settings(ENVIRONMENT="production").validate_security_settings()


def test_production_rejects_process_local_deny_list_with_many_workers():
    strong = "x" * 64
    s = _settings(ENVIRONMENT="production", SECRET_KEY=strong, DENY_LIST_BACKEND="memory", WORKERS=4)
    with pytest.raises(ValueError):
        s.validate_security_settings()

    _settings(
        ENVIRONMENT="production", SECRET_KEY=strong, DENY_LIST_BACKEND="redis", WORKERS=4
    ).validate_security_settings()
