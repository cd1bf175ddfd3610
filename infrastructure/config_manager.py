"""Configuration file management"""
import json
import os
import platform
from typing import Any, Dict, Optional

from pydantic import ValidationError

from domain.exceptions import ConfigurationError
from domain.validators import ProviderSettingsInput, QueuePolicyInput
from infrastructure.logger import get_logger

logger = get_logger(__name__)

# Platform-specific file locking
_HAS_FCNTL = False
if platform.system() != "Windows":
    try:
        import fcntl
        _HAS_FCNTL = True
    except ImportError:
        pass

DEFAULT_DATA_DIR = os.path.join("~", ".reelcast")
DEFAULT_PROVIDER_URL = "https://generativelanguage.googleapis.com/v1beta"


def default_config_path() -> str:
    """Settings file location (REELCAST_CONFIG or ~/.reelcast/settings.json)."""
    configured = os.environ.get("REELCAST_CONFIG", "").strip()
    if configured:
        return os.path.expanduser(configured)
    return os.path.join(os.path.expanduser(DEFAULT_DATA_DIR), "settings.json")


class ConfigManager:
    """Manage core settings: storage location, provider endpoint, queue policy"""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config manager

        Args:
            config_path: Path to settings JSON file
        """
        self.config_path = config_path or default_config_path()
        self.config = self.load()

    def load(self) -> Dict[str, Any]:
        """
        Load config from JSON file, layered over the defaults

        Returns:
            Configuration dictionary
        """
        config = self._default_config()
        if not os.path.exists(self.config_path):
            logger.debug(f"Config file not found, using defaults: {self.config_path}")
            return config

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                stored = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load config from {self.config_path}: {e}")
            return config

        if isinstance(stored, dict):
            models = dict(config["models"])
            models.update(stored.get("models") or {})
            config.update(stored)
            config["models"] = models
        return config

    def refresh(self) -> Dict[str, Any]:
        """Reload configuration from disk"""
        self.config = self.load()
        return self.config

    def save(self, config: Dict[str, Any] = None):
        """Save config to JSON file with file-locking to prevent race conditions.

        On Linux/Mac, uses fcntl for exclusive locks.
        On Windows, relies on atomic file operations (no locking available).

        Args:
            config: Configuration dict to save (uses self.config if None)
        """
        if config is not None:
            self.config = config

        config_dir = os.path.dirname(self.config_path)

        try:
            if config_dir:
                os.makedirs(config_dir, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                if _HAS_FCNTL:
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX)

                try:
                    json.dump(self.config, f, indent=2, ensure_ascii=False)
                finally:
                    if _HAS_FCNTL:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)

            logger.info(f"✓ Config saved to {self.config_path}")
        except OSError as e:
            logger.error(f"✗ Failed to save config: {e}")
            raise ConfigurationError(f"Could not write {self.config_path}: {e}") from e

    def get(self, key: str, default=None) -> Any:
        """
        Get config value with default fallback

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self.config.get(key, default)

    def set(self, key: str, value: Any):
        """
        Set config value and auto-save

        Args:
            key: Configuration key
            value: Value to set
        """
        self.config[key] = value
        self.save()

    def _default_config(self) -> Dict[str, Any]:
        return {
            "data_dir": DEFAULT_DATA_DIR,
            "log_level": "INFO",
            "provider_base_url": DEFAULT_PROVIDER_URL,
            "models": {
                "text": "gemini-2.5-pro",
                "image": "gemini-2.5-flash-image",
                "video": "veo-3.1-generate-preview",
            },
            "max_retries": 2,
            "inter_job_delay": 0.5,
            "video_poll_attempts": 30,
            "video_poll_interval": 10.0,
            "request_timeout": 120,
        }

    # Convenience methods
    def get_data_dir(self) -> str:
        """Directory holding the registry, project documents and asset databases"""
        return os.path.expanduser(self.get("data_dir") or DEFAULT_DATA_DIR)

    def get_log_level(self) -> str:
        """Get logging level"""
        return self.get("log_level", "INFO")

    def get_provider_base_url(self) -> str:
        """Get the validated provider REST endpoint"""
        try:
            settings = ProviderSettingsInput(base_url=self.get("provider_base_url", DEFAULT_PROVIDER_URL))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid provider_base_url: {e}") from e
        return settings.base_url

    def get_model(self, media: str) -> Optional[str]:
        """Default model name for 'text', 'image' or 'video'"""
        return (self.get("models") or {}).get(media)

    def get_queue_policy(self) -> QueuePolicyInput:
        """Retry, pacing and polling policy for the generation queue"""
        try:
            return QueuePolicyInput(
                max_retries=self.get("max_retries", 2),
                inter_job_delay=self.get("inter_job_delay", 0.5),
                video_poll_attempts=self.get("video_poll_attempts", 30),
                video_poll_interval=self.get("video_poll_interval", 10.0),
                request_timeout=self.get("request_timeout", 120),
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid queue policy: {e}") from e


__all__ = ["ConfigManager", "default_config_path", "DEFAULT_PROVIDER_URL"]
