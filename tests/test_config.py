"""
Tests for configuration management.

Tests cover:
- Loading the packaged defaults and explicit YAML files
- Environment variable overrides
- Validation errors for invalid or malformed files
"""

import os

import pytest
import yaml

from attachstore.config.settings import (
    AppSettings,
    ConfigManager,
    SharePointSettings,
    StorageSettings,
    get_config_manager,
)


@pytest.fixture
def valid_config():
    return {
        "storage": {
            "provider": "sharepoint",
            "max_file_size": 5242880,
            "allowed_types": "pdf, png",
            "sharepoint": {
                "tenant_id": "tenant",
                "client_id": "client",
                "client_secret": "secret",
                "site_id": "site",
                "base_folder": "/Finance/Paylog/",
            },
        },
        "metadata": {"connection_string": "sqlite:///test.db"},
        "cleanup": {"older_than_days": 14, "batch_size": 10},
    }


@pytest.fixture
def config_file(tmp_path, valid_config):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(valid_config))
    return str(path)


def test_packaged_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    settings = AppSettings.from_yaml()

    assert settings.storage.provider == "local"
    assert settings.storage.local.base_dir == "./uploads"
    assert settings.storage.max_file_size == 10 * 1024 * 1024
    assert settings.storage.max_files_per_invoice == 10
    assert settings.storage.sharepoint.base_folder == "Paylog"
    assert settings.cleanup.older_than_days == 30
    assert settings.cleanup.use_lease is True


def test_load_explicit_file(config_file):
    settings = AppSettings.from_yaml(config_file)

    assert settings.storage.provider == "sharepoint"
    assert settings.storage.max_file_size == 5242880
    assert settings.storage.allowed_types == ["pdf", "png"]
    assert settings.storage.sharepoint.base_folder == "Finance/Paylog"
    assert settings.storage.sharepoint.chunk_size == 10 * 320 * 1024
    assert settings.metadata.connection_string == "sqlite:///test.db"
    assert settings.cleanup.batch_size == 10


def test_config_path_env_var(monkeypatch, config_file):
    monkeypatch.setenv("ATTACHSTORE_CONFIG_PATH", config_file)
    settings = AppSettings.from_yaml()
    assert settings.storage.provider == "sharepoint"


def test_env_overrides_yaml(monkeypatch, config_file):
    monkeypatch.setenv("ATTACHSTORE_STORAGE__PROVIDER", "LOCAL")
    monkeypatch.setenv("ATTACHSTORE_STORAGE__MAX_FILES_PER_INVOICE", "3")
    monkeypatch.setenv("ATTACHSTORE_STORAGE__SHAREPOINT__SITE_ID", "other-site")

    settings = AppSettings.from_yaml(config_file)

    assert settings.storage.provider == "local"
    assert settings.storage.max_files_per_invoice == 3
    assert settings.storage.sharepoint.site_id == "other-site"
    # Untouched YAML values survive
    assert settings.storage.sharepoint.tenant_id == "tenant"


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        AppSettings.from_yaml("/nonexistent/config.yaml")


def test_invalid_yaml(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("storage: [unclosed")
    with pytest.raises(ValueError, match="Invalid YAML"):
        AppSettings.from_yaml(str(path))


def test_validation_failure(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text(yaml.safe_dump({"cleanup": {"batch_size": 0}}))
    with pytest.raises(ValueError, match="Configuration validation failed"):
        AppSettings.from_yaml(str(path))


def test_chunk_size_lower_bound():
    with pytest.raises(ValueError):
        SharePointSettings(chunk_size=1024)


def test_storage_settings_defaults():
    settings = StorageSettings()
    assert settings.allowed_types is None
    assert settings.s3.bucket == ""


def test_config_manager_singleton(config_file):
    manager = get_config_manager()
    assert manager is ConfigManager.get_instance()

    manager.load(config_file)
    assert manager.get_config_path() == config_file
    assert manager.get("storage.provider") == "sharepoint"
    assert manager.get("storage.sharepoint.site_id") == "site"
    assert manager.get("storage.nope", "fallback") == "fallback"
    assert manager.storage.max_file_size == 5242880
    assert manager.cleanup.older_than_days == 14
    assert manager.metadata.connection_string == "sqlite:///test.db"
    assert isinstance(manager.logging_config, dict)


def test_config_manager_reset(config_file):
    get_config_manager().load(config_file)
    ConfigManager.reset_instance()
    assert ConfigManager._settings is None
    assert get_config_manager().get_config_path() is None


def test_env_prefix_only(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("STORAGE__PROVIDER", "sharepoint")
    settings = AppSettings.from_yaml()
    assert settings.storage.provider == "local"
    assert "STORAGE__PROVIDER" in os.environ
