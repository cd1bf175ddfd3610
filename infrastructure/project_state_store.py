"""JSON document store for the lightweight per-project state."""
import json
import os
import shutil
from typing import Any, Dict, Optional

from domain.exceptions import StorageError
from infrastructure.logger import get_logger
from infrastructure.namespaces import state_path

logger = get_logger(__name__)


class ProjectStateStore:
    """Persist one project's scenes, clips, elements and preferences."""

    def __init__(self, data_dir: str, project_id: Optional[str] = None):
        self.data_dir = data_dir
        self.project_id = project_id

    def configure(self, project_id: Optional[str]):
        self.project_id = project_id

    @property
    def state_path(self) -> Optional[str]:
        if not self.project_id:
            return None
        return state_path(self.data_dir, self.project_id)

    def exists(self, project_id: Optional[str] = None) -> bool:
        path = state_path(self.data_dir, project_id) if project_id else self.state_path
        return bool(path) and os.path.exists(path)

    def load(self) -> Dict[str, Any]:
        path = self.state_path
        if not path or not os.path.exists(path):
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning(f"Failed to load project state {path} ({exc})")
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, data: Dict[str, Any]):
        path = self.state_path
        if not path:
            return
        tmp_path = f"{path}.tmp"
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StorageError(f"Failed to save project state {path}: {exc}") from exc

    def update(self, **kwargs):
        if not self.state_path:
            return
        state = self.load()
        state.update(kwargs)
        self.save(state)

    def clear(self, project_id: Optional[str] = None):
        """Delete the state document of ``project_id`` (default: configured project)."""
        path = state_path(self.data_dir, project_id) if project_id else self.state_path
        if path and os.path.exists(path):
            try:
                os.remove(path)
            except OSError as exc:
                raise StorageError(f"Failed to clear project state {path}: {exc}") from exc

    def copy_from(self, source_path: str, project_id: str):
        """Copy an existing state document into ``project_id``'s namespace."""
        target = state_path(self.data_dir, project_id)
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            shutil.copyfile(source_path, target)
        except OSError as exc:
            raise StorageError(f"Failed to copy project state {source_path}: {exc}") from exc


__all__ = ["ProjectStateStore"]
