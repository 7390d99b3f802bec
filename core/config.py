import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Type

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigError

# --- Base Path ---
BASE_DIR = Path(__file__).resolve().parent.parent
logger = logging.getLogger(__name__)

# --- Environment-based Settings ---

class AppSettings(BaseSettings):
    """
    Main application settings loaded from environment variables.
    The .env file is loaded automatically by pydantic-settings.
    """
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # --- General & Core ---
    LOG_LEVEL: str = Field("INFO", description="Log level for the application (e.g., DEBUG, INFO, WARNING, ERROR)")
    ROUTER_CONFIG_PATH: Optional[str] = Field(None, description="Optional: Path to a specific YAML routing file.")
    DEFAULT_PROVIDER: Optional[str] = Field(None, description="Provider id made active after registration.")

    # --- Response Cache ---
    CACHE_ENABLED: bool = Field(True, description="Whether successful responses are cached.")
    CACHE_MAX_ENTRIES: int = Field(100, gt=0, description="Maximum number of cached responses.")
    CACHE_MAX_AGE_SECONDS: int = Field(3600, gt=0, description="Time-to-live of a cached response.")

    # --- Monitoring ---
    METRICS_PORT: Optional[int] = Field(None, description="Optional: Port for the Prometheus exporter.")

# --- YAML-based Configuration Models ---

class RoutingConfig(BaseModel):
    default_provider: Optional[str] = None
    fallback_order: List[str] = Field(default_factory=list)
    cache: Dict[str, Any] = Field(default_factory=dict)

# --- Helpers ---

def load_yaml(name: str, base_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Loads ``configs/<name>.yml`` (or an explicit path) into a dict."""
    candidate = Path(name)
    if candidate.suffix in ('.yml', '.yaml'):
        config_path = candidate
    else:
        config_path = (base_dir or BASE_DIR) / 'configs' / f'{name}.yml'
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file '{config_path.name}' not found in {config_path.parent}")
    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    return data or {}

def load_config(name: str, model: Type[BaseModel], base_dir: Optional[Path] = None) -> BaseModel:
    """Loads a YAML file and validates it with the given Pydantic model."""
    return model.model_validate(load_yaml(name, base_dir))

# --- Main Config Object ---

class Config:
    """
    A unified configuration object.
    """
    def __init__(self, app: Optional[AppSettings] = None, routing: Optional[RoutingConfig] = None):
        try:
            self.app = app or AppSettings()
        except ValidationError as e:
            raise ConfigError(f"Configuration validation error: {e}") from e

        if routing is not None:
            self.routing = routing
        elif self.app.ROUTER_CONFIG_PATH:
            try:
                self.routing = load_config(self.app.ROUTER_CONFIG_PATH, RoutingConfig)
            except (FileNotFoundError, ValidationError) as e:
                raise ConfigError(f"Could not load routing configuration: {e}") from e
        else:
            self.routing = RoutingConfig()

    def cache_mapping(self) -> Dict[str, Any]:
        """Cache bounds as plain key-value pairs; YAML values override the environment."""
        mapping: Dict[str, Any] = {
            "enabled": self.app.CACHE_ENABLED,
            "max_entries": self.app.CACHE_MAX_ENTRIES,
            "max_age_seconds": self.app.CACHE_MAX_AGE_SECONDS,
        }
        mapping.update(self.routing.cache)
        return mapping

    @property
    def default_provider(self) -> Optional[str]:
        return self.routing.default_provider or self.app.DEFAULT_PROVIDER

# --- Global Config Instance ---
_settings_instance = None

def get_settings() -> Config:
    """
    Returns a singleton instance of the Config object.
    Only entry points should call this; library code receives its
    configuration explicitly.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Config()
        logger.info("Configuration loaded")
    return _settings_instance
