# tests/test_settings.py
from certsign.settings import Settings

ENV_VARS = (
    "CERTSIGN_LOG_LEVEL",
    "CERTSIGN_API_BASE_URL",
    "CERTSIGN_API_TOKEN",
    "CERTSIGN_HTTP_TIMEOUT_SEC",
    "CERTSIGN_EXPIRY_WARNING_DAYS",
    "CERTSIGN_MIN_RSA_KEY_SIZE",
    "CERTSIGN_ASSUME_DIGITAL_SIGNATURE",
    "CERTSIGN_SIGNATURE_ALGORITHM",
)


def _clear(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_settings_defaults(monkeypatch):
    _clear(monkeypatch)
    s = Settings.from_env()
    assert s == Settings()
    assert s.LOG_LEVEL == "INFO"
    assert s.API_BASE_URL == "http://localhost:8000/api/v1"
    assert s.API_TOKEN is None
    assert s.HTTP_TIMEOUT_SEC == 30.0
    assert s.EXPIRY_WARNING_DAYS == 30
    assert s.MIN_RSA_KEY_SIZE == 2048
    assert s.ASSUME_DIGITAL_SIGNATURE is True
    assert s.SIGNATURE_ALGORITHM == "RSA-SHA256"


def test_settings_parsing(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("CERTSIGN_LOG_LEVEL", "debug")
    monkeypatch.setenv("CERTSIGN_API_BASE_URL", "https://docs.example.test/api/v2/")
    monkeypatch.setenv("CERTSIGN_API_TOKEN", "t0ken")
    monkeypatch.setenv("CERTSIGN_HTTP_TIMEOUT_SEC", "2.5")
    monkeypatch.setenv("CERTSIGN_EXPIRY_WARNING_DAYS", "14")
    monkeypatch.setenv("CERTSIGN_MIN_RSA_KEY_SIZE", "3072")
    monkeypatch.setenv("CERTSIGN_ASSUME_DIGITAL_SIGNATURE", "no")
    monkeypatch.setenv("CERTSIGN_SIGNATURE_ALGORITHM", "rsa-pss-sha256")

    s = Settings.from_env()
    assert s.LOG_LEVEL == "DEBUG"
    assert s.API_BASE_URL == "https://docs.example.test/api/v2"
    assert s.API_TOKEN == "t0ken"
    assert s.HTTP_TIMEOUT_SEC == 2.5
    assert s.EXPIRY_WARNING_DAYS == 14
    assert s.MIN_RSA_KEY_SIZE == 3072
    assert s.ASSUME_DIGITAL_SIGNATURE is False
    assert s.SIGNATURE_ALGORITHM == "RSA-PSS-SHA256"


def test_invalid_numbers_fall_back_to_defaults(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("CERTSIGN_HTTP_TIMEOUT_SEC", "soon")
    monkeypatch.setenv("CERTSIGN_EXPIRY_WARNING_DAYS", "-3")
    monkeypatch.setenv("CERTSIGN_MIN_RSA_KEY_SIZE", "0")

    s = Settings.from_env()
    assert s.HTTP_TIMEOUT_SEC == 30.0
    assert s.EXPIRY_WARNING_DAYS == 30
    assert s.MIN_RSA_KEY_SIZE == 2048


def test_token_is_not_in_repr():
    assert "t0ken" not in repr(Settings(API_TOKEN="t0ken"))
