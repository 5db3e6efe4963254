# FILE: config.py
"""
Layered runtime configuration using pydantic-settings.
Values come from a YAML config file and from environment variables,
with environment variables always taking precedence over the file.
"""
import logging
import re
import threading
from pathlib import Path
from typing import Annotated, Any, Callable, Dict, Optional, Tuple, get_origin

import yaml
from pydantic import TypeAdapter, ValidationError, ValidationInfo, field_validator
from pydantic_settings import (
    BaseSettings,
    EnvSettingsSource,
    NoDecode,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "./config.yaml"
DEFAULT_CERT_FILE = "cert.pem"
DEFAULT_KEY_FILE = "key.pem"

# "sk-" is the standard OpenAI key format, "fk" the free-tier proxy keys
API_KEY_PREFIXES = ("sk-", "fk")

# Accepted string forms; anything else falls back to the default
STRICT_FORMS = {
    int: re.compile(r"[+-]?[0-9]+"),
    bool: re.compile(r"1|t|T|TRUE|true|True|0|f|F|FALSE|false|False"),
}


class Config(BaseSettings):
    """Resolved configuration snapshot. Never mutated once built."""

    model_config = SettingsConfigDict(frozen=True, case_sensitive=True)

    # Messaging platform app
    APP_ID: str = ""
    APP_SECRET: str = ""
    APP_ENCRYPT_KEY: str = ""
    APP_VERIFICATION_TOKEN: str = ""
    BOT_NAME: str = ""

    # Upstream API
    OPENAI_KEY: Annotated[Tuple[str, ...], NoDecode] = ()
    API_URL: str = "https://api.openai.com"
    HTTP_PROXY: str = ""
    OPENAI_HTTP_CLIENT_TIMEOUT: int = 550  # seconds

    # Server
    HTTP_PORT: int = 9000
    HTTPS_PORT: int = 9001
    USE_HTTPS: bool = False
    CERT_FILE: str = DEFAULT_CERT_FILE
    KEY_FILE: str = DEFAULT_KEY_FILE

    # HTTP logger sink
    HTTP_LOGGER_ENABLE: bool = False
    HTTP_LOGGER_URL: str = ""
    HTTP_LOGGER_METHOD: str = ""
    HTTP_LOGGER_INTERVAL: int = 10
    HTTP_LOGGER_THRESHOLD: int = 10

    # Azure OpenAI
    AZURE_ON: bool = False
    AZURE_API_VERSION: str = "2023-03-15-preview"
    AZURE_DEPLOYMENT_NAME: str = ""
    AZURE_RESOURCE_NAME: str = ""
    AZURE_OPENAI_TOKEN: str = ""

    # Set only on snapshots produced by resolve()
    initialized: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Sources are merged by load_sources(); the model only sees its kwargs.
        return (init_settings,)

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_raw_value(cls, value: Any, info: ValidationInfo) -> Any:
        if info.field_name not in CONFIG_KEYS:
            return value
        field = cls.model_fields[info.field_name]
        default = field.get_default(call_default_factory=True)
        return coerce(info.field_name, value, field.annotation, default)

    def get_cert_file(self) -> str:
        """Certificate path, falling back to cert.pem if the file is missing."""
        return _existing_file_or_default(self.CERT_FILE, DEFAULT_CERT_FILE, "Certificate")

    def get_key_file(self) -> str:
        """Private key path, falling back to key.pem if the file is missing."""
        return _existing_file_or_default(self.KEY_FILE, DEFAULT_KEY_FILE, "Key")


CONFIG_KEYS = tuple(name for name in Config.model_fields if name != "initialized")


def _existing_file_or_default(path: str, default: str, label: str) -> str:
    if path == "":
        return default
    if not Path(path).exists():
        logger.warning(f"{label} file {path} does not exist, using default file {default}")
        return default
    return path


def _as_string(value: Any) -> str:
    """Flatten a raw file/env value to the string form every key is read as."""
    if value is None or isinstance(value, dict):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    return str(value)


def filter_api_keys(keys) -> Tuple[str, ...]:
    """Keep only keys in a recognised format, in their original order."""
    return tuple(key for key in keys if key.startswith(API_KEY_PREFIXES))


def coerce(key: str, raw: Any, annotation: Any, default: Any) -> Any:
    """
    Convert a raw config value to the declared field type.

    Empty values resolve to the default. Values that cannot be parsed as
    the declared type are reported and also resolve to the default.
    API key lists are split on commas and unrecognised entries dropped.
    """
    value = _as_string(raw)
    if value == "":
        return default

    if annotation is str:
        return value

    if get_origin(annotation) is tuple:
        return filter_api_keys(value.split(","))

    pattern = STRICT_FORMS.get(annotation)
    try:
        if pattern is not None and not pattern.fullmatch(value):
            raise ValueError(f"{value!r} is not a valid {annotation.__name__}")
        return TypeAdapter(annotation).validate_python(value)
    except (ValueError, ValidationError):
        logger.warning(f"Invalid value for {key}, using default value {default}")
        return default


class _TolerantYamlSource(YamlConfigSettingsSource):
    """YAML source that treats an unreadable or malformed file as empty."""

    def _read_file(self, file_path: Path) -> Dict[str, Any]:
        try:
            data = super()._read_file(file_path)
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            logger.warning(f"Failed to read config file {file_path}: {e}, ignoring it")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Config file {file_path} is not a key-value mapping, ignoring it")
            return {}
        return data


def load_sources(path: str) -> Dict[str, Any]:
    """
    Load raw values for every config key.
    File values are overlaid by environment values; empty env vars count as unset.
    """
    file_values = _TolerantYamlSource(Config, yaml_file=path, yaml_file_encoding="utf-8")()
    env_values = EnvSettingsSource(Config, case_sensitive=True, env_ignore_empty=True)()

    merged = {key: file_values[key] for key in CONFIG_KEYS if key in file_values}
    merged.update({key: env_values[key] for key in CONFIG_KEYS if key in env_values})
    return merged


def resolve(path: str, loader: Callable[[str], Dict[str, Any]] = load_sources) -> Config:
    """Build a fully populated config snapshot from the sources at path."""
    values = loader(path)
    return Config(**values, initialized=True)


class ConfigResolver:
    """Resolves the config at most once and hands every caller the same snapshot."""

    def __init__(
        self,
        path: str = DEFAULT_CONFIG_PATH,
        loader: Optional[Callable[[str], Dict[str, Any]]] = None,
    ):
        self.path = path
        self._loader = loader or load_sources
        self._lock = threading.Lock()
        self._config: Optional[Config] = None

    @property
    def resolved(self) -> bool:
        return self._config is not None

    def get(self) -> Config:
        config = self._config
        if config is not None:
            return config

        with self._lock:
            if self._config is None:
                self._config = resolve(self.path, loader=self._loader)
                logger.info(f"Config resolved from {self.path}")
            return self._config

    def reset(self):
        """Drop the snapshot so the next get() resolves again."""
        with self._lock:
            self._config = None


# Global resolver instance
_resolver = ConfigResolver()
_resolver_lock = threading.Lock()


def configure(
    path: str, loader: Optional[Callable[[str], Dict[str, Any]]] = None
) -> ConfigResolver:
    """
    Point the global resolver at a config file path.
    Has no effect once the config has been resolved; waits for a
    resolution already in progress.
    """
    global _resolver
    with _resolver_lock:
        if _resolver.resolved:
            logger.warning(
                f"Config already resolved from {_resolver.path}, ignoring {path}"
            )
            return _resolver
        _resolver = ConfigResolver(path, loader)
        return _resolver


def get_config() -> Config:
    """Get the global config, resolving it on first use."""
    resolver = _resolver
    if resolver.resolved:
        return resolver.get()

    # First resolution holds the swap lock so configure() cannot replace it midway
    with _resolver_lock:
        return _resolver.get()


def reset_config():
    """Restore an unresolved global resolver with the default path."""
    global _resolver
    with _resolver_lock:
        _resolver = ConfigResolver()
