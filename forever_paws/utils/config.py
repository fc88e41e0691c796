"""
Configuration management with schema validation.
Single source of truth for Forever Paws client configuration.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .exceptions import ConfigError
from .logger import get_logger

logger = get_logger(__name__)

# Load environment variables
load_dotenv()

CONFIG_DIR = Path(os.getenv("FOREVER_PAWS_CONFIG_DIR", "config"))
SETTINGS_FILE = "settings.yaml"


class AppSettings(BaseModel):
    name: str = "Forever Paws"
    version: str = "1.0.0"
    environment: str = "production"


class ApiSettings(BaseModel):
    gateway_url: str = "https://api.foreverpaws.app/api"
    alternate_gateway_url: Optional[str] = None
    backend_url: str = "https://backend.foreverpaws.app"
    backend_anon_key: str = ""
    user_agent: str = "ForeverPaws/1.0"


class NetworkSettings(BaseModel):
    """Timeouts for the three attempt tiers (seconds)."""
    standard_timeout: float = 30.0
    pinned_tls_timeout: float = 15.0
    conservative_timeout: float = 60.0
    detect_tunnel: bool = True
    verify_ssl: bool = True


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file_path: Optional[str] = "logs/forever_paws.log"
    max_bytes: int = 10485760
    backup_count: int = 5


class StorageSettings(BaseModel):
    data_dir: str = "data"
    database_file: str = "forever_paws.db"
    credentials_file: str = "credentials.enc"
    encryption_key: Optional[str] = None


class EmailPolicySettings(BaseModel):
    """Optional heuristics on top of syntactic validation. All off by default."""
    min_local_length: int = 1
    blocked_local_parts: List[str] = Field(default_factory=list)
    blocked_domains: List[str] = Field(default_factory=list)
    reject_sequential_local_parts: bool = False


class AuthSettings(BaseModel):
    auto_login_throttle_seconds: float = 2.0
    password_min_length: int = 8
    password_max_length: int = 128
    email_policy: EmailPolicySettings = Field(default_factory=EmailPolicySettings)


class CheckoutSettings(BaseModel):
    empty_cart_recheck_delay: float = 0.5
    currency: str = "USD"
    simulate_order_progress: bool = True
    simulation_step_seconds: float = 2.0


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    network: NetworkSettings = Field(default_factory=NetworkSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    checkout: CheckoutSettings = Field(default_factory=CheckoutSettings)


class ConfigManager:
    """Loads settings.yaml with ${VAR} / ${VAR:default} environment substitution"""

    def __init__(self, config_dir: Optional[str] = None):
        self.config_dir = Path(config_dir) if config_dir else CONFIG_DIR
        self.settings_path = self.config_dir / SETTINGS_FILE
        self._settings: Optional[Settings] = None

    def _substitute_env_vars(self, value: Any) -> Any:
        """Recursively substitute environment variables"""
        if isinstance(value, str):
            if value.startswith("${") and value.endswith("}"):
                var_expr = value[2:-1]
                if ":" in var_expr:
                    var_name, default = var_expr.split(":", 1)
                    return os.getenv(var_name.strip(), default.strip())
                return os.getenv(var_expr.strip(), "")
        elif isinstance(value, dict):
            return {k: self._substitute_env_vars(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self._substitute_env_vars(item) for item in value]
        return value

    @staticmethod
    def _drop_empty(value: Any) -> Any:
        # Empty substitutions fall back to model defaults
        if isinstance(value, dict):
            return {k: ConfigManager._drop_empty(v) for k, v in value.items() if v != ""}
        return value

    def load_settings(self) -> Settings:
        """Load and validate settings.yaml. A missing file yields defaults."""
        if not self.settings_path.exists():
            logger.info("Settings file not found, using defaults", path=str(self.settings_path))
            self._settings = Settings()
            return self._settings

        try:
            with open(self.settings_path, "r", encoding="utf-8") as f:
                raw_data: Dict[str, Any] = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read settings file {self.settings_path}: {e}") from e

        processed = self._drop_empty(self._substitute_env_vars(raw_data))
        try:
            self._settings = Settings(**processed)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings in {self.settings_path}: {e}") from e

        logger.debug("Settings loaded", path=str(self.settings_path))
        return self._settings

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            return self.load_settings()
        return self._settings
