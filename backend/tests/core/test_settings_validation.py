import pytest

from app.core.settings import Settings, validate_settings

STRONG_SECRET = "s" * 40


def make_settings(**overrides):
    values = {
        "app_env": "development",
        "secret_key": STRONG_SECRET,
        "admin_email": "owner@clinic.example.com",
        "admin_password": "A-Strong-Password-42",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_production_rejects_weak_secret():
    settings = make_settings(app_env="production", secret_key="short")
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        validate_settings(settings)


def test_development_only_warns(caplog):
    settings = make_settings(secret_key="short", admin_email="admin@example.com")
    validate_settings(settings)
    assert "SECRET_KEY" in caplog.text
    assert "ADMIN_EMAIL" in caplog.text


def test_currency_is_normalised():
    assert make_settings(currency="usd").currency == "USD"


def test_invoice_limit_must_be_positive():
    with pytest.raises(RuntimeError, match="MAX_INVOICE_AMOUNT_MINOR"):
        validate_settings(make_settings(max_invoice_amount_minor=0))
