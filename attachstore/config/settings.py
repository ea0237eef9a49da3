"""
Configuration for attachstore using Pydantic Settings.

Settings come from (highest priority first):
1. Environment variables (ATTACHSTORE_SECTION__KEY)
2. A YAML config file
3. Defaults

Example: ATTACHSTORE_STORAGE__PROVIDER=sharepoint
         ATTACHSTORE_STORAGE__SHAREPOINT__SITE_ID=contoso.sharepoint.com,abc,def
"""

from __future__ import annotations

import os
import yaml
import logging
from typing import Any
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource


# Plain stdlib logger: configuration is loaded before logging is set up
_basic_logger = logging.getLogger(__name__)

MIB = 1024 * 1024

# Graph upload sessions require chunk sizes that are multiples of 320 KiB
UPLOAD_CHUNK_ALIGNMENT = 320 * 1024

SUPPORTED_PROVIDERS: tuple[str, ...] = ("local", "sharepoint", "s3", "r2")


class LocalStorageSettings(BaseModel):
    """Settings for the local filesystem backend."""
    base_dir: str = Field(default="./uploads",
                          description="Base directory for stored attachments")


class SharePointSettings(BaseModel):
    """Settings for the SharePoint document library backend."""
    tenant_id: str = Field(default="", description="Azure AD tenant ID")
    client_id: str = Field(default="", description="App registration client ID")
    client_secret: str = Field(default="", description="App registration client secret")
    site_id: str = Field(default="", description="SharePoint site ID")
    drive_id: str | None = Field(
        default=None,
        description="Document library drive ID (defaults to the site's default drive)")
    base_folder: str = Field(default="Paylog", description="Root folder inside the drive")
    simple_upload_max_bytes: int = Field(
        default=4 * MIB, ge=1,
        description="Payloads above this size use an upload session")
    chunk_size: int = Field(
        default=10 * UPLOAD_CHUNK_ALIGNMENT, ge=UPLOAD_CHUNK_ALIGNMENT,
        description="Upload session chunk size in bytes")
    timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("base_folder")
    @classmethod
    def strip_base_folder(cls, value: str) -> str:
        return value.strip("/")


class ObjectStoreSettings(BaseModel):
    """Settings for S3-compatible providers (not implemented yet)."""
    bucket: str = ""
    region: str = ""
    endpoint: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""


class StorageSettings(BaseModel):
    """Attachment storage configuration."""
    provider: str = Field(default="local", description="Storage provider")
    local: LocalStorageSettings = Field(default_factory=LocalStorageSettings)
    sharepoint: SharePointSettings = Field(default_factory=SharePointSettings)
    s3: ObjectStoreSettings = Field(default_factory=ObjectStoreSettings)
    r2: ObjectStoreSettings = Field(default_factory=ObjectStoreSettings)
    max_file_size: int = Field(
        default=10 * MIB, description="Maximum attachment size in bytes")
    max_files_per_invoice: int = Field(default=10)
    allowed_types: list[str] | None = Field(
        default=None,
        description="Extensions allowed for upload (subset of the built-in allow-list)")

    @field_validator("provider")
    @classmethod
    def normalize_provider(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("allowed_types", mode="before")
    @classmethod
    def split_allowed_types(cls, value: Any) -> Any:
        # YAML may give "pdf,png,jpg"; env vars take a JSON list. Blank means unset.
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()] or None
        return value


class MetadataStoreSettings(BaseModel):
    """Settings for the attachment metadata store."""
    connection_string: str = Field(
        default="sqlite:///attachstore.db",
        description="SQLAlchemy connection string")


class CleanupSettings(BaseModel):
    """Defaults for the lifecycle cleanup job."""
    older_than_days: int = Field(default=30, ge=0)
    batch_size: int = Field(default=50, ge=1, le=10000)
    use_lease: bool = Field(
        default=True,
        description="Serialize cleanup runs through a lease in the metadata store")
    lease_ttl_seconds: int = Field(default=900, ge=1)


class LoggingSettings(BaseModel):
    """``logging.config.dictConfig`` mapping; unknown keys pass through."""
    model_config = {'extra': 'allow'}

    version: int = 1
    disable_existing_loggers: bool = False
    formatters: dict[str, Any] = Field(default_factory=dict)
    filters: dict[str, Any] = Field(default_factory=dict)
    handlers: dict[str, Any] = Field(default_factory=dict)
    root: dict[str, Any] = Field(default_factory=dict)
    loggers: dict[str, Any] = Field(default_factory=dict)


CONFIG_PATH_ENV = "ATTACHSTORE_CONFIG_PATH"
PACKAGE_CONFIG = os.path.join(os.path.dirname(__file__), "config.yaml")


def config_search_paths() -> list[str]:
    """Candidate config files, most specific first."""
    paths = [os.environ.get(CONFIG_PATH_ENV, ""), os.path.join(os.getcwd(), "config.yaml"),
             PACKAGE_CONFIG]
    return [path for path in paths if path]


def read_yaml_config(path: str) -> dict[str, Any]:
    """
    Parse a YAML config file into a mapping.

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the file is not valid YAML or is not a mapping
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found: {path}") from None
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML in {path}: top level must be a mapping")
    return data


class AppSettings(BaseSettings):
    """
    Root settings object.

    YAML values are passed in as init arguments; ATTACHSTORE_* environment
    variables take precedence over them, nested keys separated by ``__``.
    """

    model_config = SettingsConfigDict(
        env_prefix="ATTACHSTORE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    storage: StorageSettings = Field(default_factory=StorageSettings)
    metadata: MetadataStoreSettings = Field(default_factory=MetadataStoreSettings)
    cleanup: CleanupSettings = Field(default_factory=CleanupSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over the file contents handed to __init__
        return env_settings, init_settings

    @classmethod
    def from_yaml(cls, config_path: str | None = None) -> AppSettings:
        """
        Build settings from a YAML file plus environment overrides.

        Without an explicit path the first existing file among
        $ATTACHSTORE_CONFIG_PATH, ./config.yaml and the packaged defaults
        is used.

        Raises:
            FileNotFoundError: If the file (or any candidate) is missing
            ValueError: On malformed YAML or values that fail validation
        """
        if config_path is None:
            candidates = config_search_paths()
            config_path = next((p for p in candidates if os.path.isfile(p)), None)
            if config_path is None:
                raise FileNotFoundError(
                    "No configuration file found; looked in: " + ", ".join(candidates))

        _basic_logger.debug(f"Reading configuration file {config_path}")
        data = read_yaml_config(config_path)
        try:
            return cls(**data)
        except ValidationError as e:
            raise ValueError(f"Configuration validation failed for {config_path}:\n{e}") from e


class ConfigManager:
    """Holds the loaded AppSettings for the process."""

    _instance: ConfigManager | None = None
    _settings: AppSettings | None = None
    _config_path: str | None = None

    @classmethod
    def get_instance(cls) -> ConfigManager:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None
        cls._settings = None
        cls._config_path = None

    def load(self, config_path: str | None = None) -> AppSettings:
        """
        Load settings, reusing the cached ones when no explicit path is given.
        """
        cached = ConfigManager._settings
        if cached is not None and config_path is None:
            return cached
        ConfigManager._settings = AppSettings.from_yaml(config_path)
        ConfigManager._config_path = config_path
        return ConfigManager._settings

    @property
    def settings(self) -> AppSettings:
        return ConfigManager._settings or self.load()

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a dotted key such as ``storage.sharepoint.site_id``."""
        node: Any = self.settings.model_dump()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def get_config_path(self) -> str | None:
        return ConfigManager._config_path

    @property
    def storage(self) -> StorageSettings:
        return self.settings.storage

    @property
    def metadata(self) -> MetadataStoreSettings:
        return self.settings.metadata

    @property
    def cleanup(self) -> CleanupSettings:
        return self.settings.cleanup

    @property
    def logging_config(self) -> dict[str, Any]:
        return self.settings.logging.model_dump()


def get_config_manager() -> ConfigManager:
    return ConfigManager.get_instance()


__all__ = [
    'AppSettings',
    'CleanupSettings',
    'ConfigManager',
    'LocalStorageSettings',
    'LoggingSettings',
    'MetadataStoreSettings',
    'ObjectStoreSettings',
    'SharePointSettings',
    'StorageSettings',
    'SUPPORTED_PROVIDERS',
    'UPLOAD_CHUNK_ALIGNMENT',
    'config_search_paths',
    'get_config_manager',
    'read_yaml_config',
]
