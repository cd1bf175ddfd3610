"""Infrastructure layer: config, settings, asset storage, project registry, provider client."""
from .config_manager import ConfigManager
from .settings_store import SettingsStore
from .asset_store import AssetStore
from .project_state_store import ProjectStateStore
from .project_registry import ProjectRegistry
from .gemini_client import GeminiClient

__all__ = [
    "ConfigManager",
    "SettingsStore",
    "AssetStore",
    "ProjectStateStore",
    "ProjectRegistry",
    "GeminiClient",
]
