import pytest

from app import main


def _settings(**overrides):
    class Dummy:
        app_env = "prod"
        metrics_enabled = True
        metrics_token = "t" * 32
        principal_id_header = "X-Principal-Id"

    settings_obj = Dummy()
    for key, value in overrides.items():
        setattr(settings_obj, key, value)
    return settings_obj


def test_validate_prod_config_rejects_short_metrics_token():
    with pytest.raises(RuntimeError) as excinfo:
        main._validate_prod_config(_settings(metrics_token="short"))

    assert "METRICS_TOKEN" in str(excinfo.value)


def test_validate_prod_config_requires_principal_header():
    with pytest.raises(RuntimeError) as excinfo:
        main._validate_prod_config(_settings(principal_id_header="  "))

    assert "PRINCIPAL_ID_HEADER" in str(excinfo.value)


def test_validate_prod_config_ignores_token_when_metrics_disabled():
    main._validate_prod_config(_settings(metrics_enabled=False, metrics_token=None))


def test_validate_prod_config_skips_dev():
    main._validate_prod_config(_settings(app_env="dev", metrics_token=None, principal_id_header=""))
