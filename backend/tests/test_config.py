import pytest
from pydantic import ValidationError

from marketplace.config import Settings


def test_secret_key_has_no_default(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)

    with pytest.raises(ValidationError) as exc_info:
        Settings(_env_file=None)

    assert "secret_key" in str(exc_info.value)


def test_short_secret_key_is_refused(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)

    with pytest.raises(ValidationError):
        Settings(secret_key="change-me", _env_file=None)


def test_secret_key_read_from_environment(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "x" * 32)

    assert Settings(_env_file=None).secret_key == "x" * 32
