from pathlib import Path

import pytest

from forever_paws.utils.config import ConfigManager
from forever_paws.utils.exceptions import ConfigError


def write_settings(tmp_path, text):
    (tmp_path / "settings.yaml").write_text(text, encoding="utf-8")
    return ConfigManager(str(tmp_path))


def test_missing_file_uses_defaults(tmp_path):
    settings = ConfigManager(str(tmp_path)).load_settings()

    assert settings.network.standard_timeout == 30.0
    assert settings.network.pinned_tls_timeout == 15.0
    assert settings.network.conservative_timeout == 60.0
    assert settings.auth.password_min_length == 8
    assert settings.api.alternate_gateway_url is None


def test_env_substitution(tmp_path, monkeypatch):
    monkeypatch.setenv("FP_TEST_GATEWAY", "https://gw.example.org/api")
    monkeypatch.delenv("FP_TEST_LEVEL", raising=False)
    manager = write_settings(
        tmp_path,
        'api:\n  gateway_url: "${FP_TEST_GATEWAY:https://fallback}"\n'
        'logging:\n  level: "${FP_TEST_LEVEL:WARNING}"\n',
    )

    settings = manager.load_settings()

    assert settings.api.gateway_url == "https://gw.example.org/api"
    assert settings.logging.level == "WARNING"


def test_unset_variable_without_default_falls_back_to_model_default(tmp_path, monkeypatch):
    monkeypatch.delenv("FP_TEST_ALT", raising=False)
    monkeypatch.delenv("FP_TEST_KEY", raising=False)
    manager = write_settings(
        tmp_path,
        'api:\n  alternate_gateway_url: "${FP_TEST_ALT}"\n'
        'storage:\n  encryption_key: "${FP_TEST_KEY}"\n  data_dir: "store"\n',
    )

    settings = manager.load_settings()

    assert settings.api.alternate_gateway_url is None
    assert settings.storage.encryption_key is None
    assert settings.storage.data_dir == "store"


def test_settings_property_caches(tmp_path):
    manager = ConfigManager(str(tmp_path))

    assert manager.settings is manager.settings


def test_invalid_yaml_raises_config_error(tmp_path):
    manager = write_settings(tmp_path, "api: [unclosed\n")

    with pytest.raises(ConfigError):
        manager.load_settings()


def test_invalid_values_raise_config_error(tmp_path):
    manager = write_settings(tmp_path, "network:\n  standard_timeout: soon\n")

    with pytest.raises(ConfigError):
        manager.load_settings()


def test_shipped_settings_file_loads(monkeypatch):
    for name in ("ENVIRONMENT", "LOG_LEVEL", "FOREVER_PAWS_GATEWAY_URL", "FOREVER_PAWS_ENC_KEY"):
        monkeypatch.delenv(name, raising=False)

    settings = ConfigManager(str(Path(__file__).resolve().parent.parent / "config")).load_settings()

    assert settings.app.name == "Forever Paws"
    assert settings.checkout.currency == "USD"
    assert settings.storage.encryption_key is None
