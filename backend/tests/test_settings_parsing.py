import pytest
from pydantic import ValidationError

from app.settings import Settings


@pytest.mark.parametrize(
    "env_value, expected",
    [
        (None, []),
        ("https://example.com", ["https://example.com"]),
        ("https://a.com, https://b.com", ["https://a.com", "https://b.com"]),
        ('["https://a.com","https://b.com"]', ["https://a.com", "https://b.com"]),
    ],
)
def test_cors_env_parsing(monkeypatch, env_value, expected):
    if env_value is None:
        monkeypatch.delenv("CORS_ORIGINS", raising=False)
    else:
        monkeypatch.setenv("CORS_ORIGINS", env_value)

    settings = Settings(_env_file=None)

    assert settings.cors_origins == expected


def test_defaults_to_prod_when_env_missing(monkeypatch):
    monkeypatch.delenv("APP_ENV", raising=False)

    settings = Settings(metrics_enabled=False, _env_file=None)

    assert settings.app_env == "prod"


def test_business_defaults():
    settings = Settings(app_env="dev", _env_file=None)

    assert settings.order_number_prefix == "WO"
    assert settings.regular_order_photo_limit == 15
    assert settings.post_construction_photo_limit == 50
    assert (settings.daily_report_min_chars, settings.daily_report_max_chars) == (10, 2000)
    assert settings.principal_id_header == "X-Principal-Id"


def test_limits_read_from_env(monkeypatch):
    monkeypatch.setenv("REGULAR_ORDER_PHOTO_LIMIT", "20")
    monkeypatch.setenv("ORDER_NUMBER_PREFIX", "job")

    settings = Settings(app_env="dev", _env_file=None)

    assert settings.regular_order_photo_limit == 20
    assert settings.order_number_prefix == "JOB"


@pytest.mark.parametrize(
    "field",
    ["regular_order_photo_limit", "post_construction_photo_limit", "outbox_max_attempts", "order_number_max_attempts"],
)
def test_limits_must_be_positive(field):
    with pytest.raises(ValidationError, match="positive"):
        Settings(app_env="dev", _env_file=None, **{field: 0})


def test_report_bounds_must_be_ordered():
    with pytest.raises(ValidationError, match="daily_report_max_chars"):
        Settings(app_env="dev", daily_report_min_chars=50, daily_report_max_chars=10, _env_file=None)


def test_prod_requires_metrics_token_when_enabled():
    with pytest.raises(ValidationError, match="METRICS_TOKEN"):
        Settings(app_env="prod", metrics_enabled=True, metrics_token=None, _env_file=None)


def test_prod_rejects_wildcard_cors_with_strict_mode():
    with pytest.raises(ValidationError, match="CORS_ORIGINS"):
        Settings(
            app_env="prod",
            strict_cors=True,
            cors_origins=["*"],
            metrics_enabled=False,
            _env_file=None,
        )


def test_prod_rejects_testing_mode():
    with pytest.raises(ValidationError, match="testing"):
        Settings(app_env="prod", metrics_enabled=False, testing=True, _env_file=None)


def test_prod_accepts_valid_configuration():
    settings = Settings(
        app_env="prod",
        strict_cors=True,
        cors_origins=["https://example.com"],
        metrics_enabled=True,
        metrics_token="metrics-token-0123456789",
        _env_file=None,
    )

    assert settings.cors_origins == ["https://example.com"]
