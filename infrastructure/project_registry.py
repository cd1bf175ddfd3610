"""Project registry with SQLite storage for REELCAST."""
import os
import sqlite3
import uuid
from typing import Callable, List, Optional

from domain.exceptions import InputValidationError, MigrationError, ProjectNotFoundError, StorageError
from domain.models import ProjectMetadata, utc_now
from domain.validators import ProjectNameInput
from infrastructure.asset_store import AssetStore
from infrastructure.error_handler import log_and_format_error
from infrastructure.logger import get_logger
from infrastructure.namespaces import (
    DEFAULT_PROJECT_ID,
    derive_state_key as _derive_state_key,
    derive_store_name as _derive_store_name,
    is_safe_project_id,
    legacy_state_path,
    legacy_store_path,
    registry_path,
)
from infrastructure.project_state_store import ProjectStateStore

logger = get_logger(__name__)

ACTIVE_PROJECT_KEY = "active_project"
MIGRATION_FLAG_KEY = "legacy_migrated"
DEFAULT_PROJECT_NAME = "New Project"
LEGACY_PROJECT_NAME = "My Project"


class ProjectRegistry:
    """Create, list, switch and delete projects.

    The registry database is global (not project-scoped): it holds the project
    list in insertion order and the active-project pointer. Per-project data
    lives in the state document and asset database derived from the id.
    """

    def __init__(
        self,
        data_dir: str,
        asset_store: Optional[AssetStore] = None,
        state_store: Optional[ProjectStateStore] = None,
        on_reload: Optional[Callable[[str], None]] = None,
        before_switch: Optional[Callable[[str], None]] = None,
    ):
        self.data_dir = data_dir
        self.db_path = registry_path(data_dir)
        self.assets = asset_store or AssetStore(data_dir, self.get_active_project_id)
        self.state_store = state_store or ProjectStateStore(data_dir)
        self.on_reload = on_reload
        self.before_switch = before_switch
        self._active_id: Optional[str] = None
        self._ensure_db()

    def _ensure_db(self) -> None:
        """Create database and tables if not exists."""
        os.makedirs(self.data_dir, exist_ok=True)
        conn = self._get_conn()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    name TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)
            conn.commit()
        finally:
            conn.close()
        logger.debug(f"Project registry initialized: {self.db_path}")

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    # -----------------------------
    # Settings helpers
    # -----------------------------
    def _get_setting(self, key: str) -> Optional[str]:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        return row["value"] if row else None

    def _set_setting(self, key: str, value: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("""
                INSERT INTO settings (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """, (key, value))
            conn.commit()
        finally:
            conn.close()

    def _set_active(self, project_id: str) -> None:
        self._set_setting(ACTIVE_PROJECT_KEY, project_id)
        self._active_id = project_id

    def _touch(self, project_id: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("UPDATE projects SET updated_at = ? WHERE id = ?", (utc_now(), project_id))
            conn.commit()
        finally:
            conn.close()

    def _release_active(self) -> None:
        # Runs while the outgoing project is still active.
        if self.before_switch is not None:
            self.before_switch(self.get_active_project_id())

    def _trigger_reload(self, project_id: str) -> None:
        if self.on_reload is not None:
            self.on_reload(project_id)

    @staticmethod
    def _row_to_project(row: sqlite3.Row) -> ProjectMetadata:
        return ProjectMetadata(
            id=row["id"],
            name=row["name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # -----------------------------
    # Namespace keys
    # -----------------------------
    @staticmethod
    def derive_state_key(project_id: str) -> str:
        return _derive_state_key(project_id)

    @staticmethod
    def derive_store_name(project_id: str) -> str:
        return _derive_store_name(project_id)

    # -----------------------------
    # Public API
    # -----------------------------
    def list_projects(self) -> List[ProjectMetadata]:
        """Return all projects in creation order."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT id, name, created_at, updated_at FROM projects ORDER BY seq ASC"
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_project(row) for row in rows]

    def get_project(self, project_id: str) -> Optional[ProjectMetadata]:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT id, name, created_at, updated_at FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_project(row) if row else None

    def get_active_project_id(self) -> str:
        """Id of the active project (``default`` until one is recorded)."""
        if self._active_id is None:
            self._active_id = self._get_setting(ACTIVE_PROJECT_KEY) or DEFAULT_PROJECT_ID
        return self._active_id

    def get_active_project(self) -> Optional[ProjectMetadata]:
        return self.get_project(self.get_active_project_id())

    def create_project(self, name: str, project_id: Optional[str] = None) -> ProjectMetadata:
        """Register a new project (appended, not activated).

        Raises:
            ValidationError: if the name is invalid
            InputValidationError: if ``project_id`` would not map onto its own namespace
        """
        validated = ProjectNameInput(name=name)
        if project_id is not None and not is_safe_project_id(project_id):
            raise InputValidationError(
                f"Project id '{project_id}' may only contain letters, digits, '-' and '_'"
            )
        now = utc_now()
        project = ProjectMetadata(
            id=project_id or str(uuid.uuid4()),
            name=validated.name,
            created_at=now,
            updated_at=now,
        )

        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT INTO projects (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (project.id, project.name, project.created_at, project.updated_at),
            )
            conn.commit()
        finally:
            conn.close()

        logger.info(f"✓ Project created: {project.name} ({project.id})")
        return project

    def create_and_switch(self, name: str) -> ProjectMetadata:
        """Create a project, activate it and trigger a full reload."""
        project = self.create_project(name)
        self._release_active()
        self._set_active(project.id)
        self._trigger_reload(project.id)
        return project

    def rename_project(self, project_id: str, name: str) -> Optional[ProjectMetadata]:
        """Rename a project; unknown ids are ignored."""
        if self.get_project(project_id) is None:
            logger.debug(f"Rename ignored, unknown project: {project_id}")
            return None

        validated = ProjectNameInput(name=name)
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE projects SET name = ?, updated_at = ? WHERE id = ?",
                (validated.name, utc_now(), project_id),
            )
            conn.commit()
        finally:
            conn.close()

        logger.info(f"Project renamed: {project_id} -> {validated.name}")
        return self.get_project(project_id)

    def delete_project(self, project_id: str) -> str:
        """Remove a project with its state document and asset database.

        If the active project is deleted, the first remaining project (or a
        fresh default project) becomes active and the reload hook fires.

        Returns:
            The active project id after deletion
        """
        active_id = self.get_active_project_id()
        if active_id == project_id:
            self._release_active()

        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            conn.commit()
        finally:
            conn.close()

        try:
            self.state_store.clear(project_id)
        except StorageError as exc:
            logger.warning(f"Project state for {project_id} not removed: {exc}")
        try:
            self.assets.drop_namespace(project_id)
        except StorageError as exc:
            logger.warning(f"Asset store for {project_id} not removed: {exc}")

        logger.info(f"Project deleted: {project_id}")

        if active_id != project_id:
            return active_id

        remaining = self.list_projects()
        if remaining:
            fallback = remaining[0]
        else:
            fallback = self.create_project(DEFAULT_PROJECT_NAME)
        self._set_active(fallback.id)
        logger.info(f"Active project deleted, switched to {fallback.name} ({fallback.id})")
        self._trigger_reload(fallback.id)
        return fallback.id

    def switch_project(self, project_id: str) -> bool:
        """Activate ``project_id`` and trigger a full reload.

        Returns:
            False if the project was already active
        """
        if project_id == self.get_active_project_id():
            return False
        if self.get_project(project_id) is None:
            raise ProjectNotFoundError(f"Project not found: {project_id}")

        self._release_active()
        self._set_active(project_id)
        self._touch(project_id)
        logger.info(f"Switched to project {project_id}")
        self._trigger_reload(project_id)
        return True

    def ensure_project_exists(self) -> ProjectMetadata:
        """Guarantee a non-empty project list and an active id that resolves."""
        projects = self.list_projects()
        if not projects:
            project = self.create_project(DEFAULT_PROJECT_NAME)
            self._set_active(project.id)
            return project

        active = self.get_active_project()
        if active is None:
            active = projects[0]
            self._set_active(active.id)
            logger.info(f"Active project repaired -> {active.id}")
        return active

    # -----------------------------
    # Legacy migration
    # -----------------------------
    def is_migrated(self) -> bool:
        return self._get_setting(MIGRATION_FLAG_KEY) == "done"

    def migrate_legacy(self) -> bool:
        """Move a single-project layout into the ``default`` project once.

        The legacy files are removed only when both copies succeeded.

        Returns:
            True if a migration ran
        """
        if self.is_migrated():
            return False

        old_state = legacy_state_path(self.data_dir)
        old_store = legacy_store_path(self.data_dir)

        if self.list_projects() or not (os.path.exists(old_state) or os.path.exists(old_store)):
            self._set_setting(MIGRATION_FLAG_KEY, "done")
            return False

        state_copied = True
        if os.path.exists(old_state):
            try:
                self.state_store.copy_from(old_state, DEFAULT_PROJECT_ID)
            except StorageError as exc:
                state_copied = False
                log_and_format_error(MigrationError(f"Legacy project state not copied: {exc}"), "migrate_legacy")

        assets_copied = True
        if os.path.exists(old_store):
            try:
                self.assets.copy_namespace(old_store, DEFAULT_PROJECT_ID)
            except StorageError as exc:
                assets_copied = False
                log_and_format_error(
                    MigrationError(f"Legacy assets not copied, starting with an empty store: {exc}"),
                    "migrate_legacy",
                )

        if self.get_project(DEFAULT_PROJECT_ID) is None:
            self.create_project(LEGACY_PROJECT_NAME, project_id=DEFAULT_PROJECT_ID)
        self._set_active(DEFAULT_PROJECT_ID)
        self._set_setting(MIGRATION_FLAG_KEY, "done")

        if state_copied and assets_copied:
            for path in (old_state, old_store):
                if os.path.exists(path):
                    try:
                        os.remove(path)
                    except OSError as exc:
                        logger.warning(f"Legacy file not removed: {path} ({exc})")
        else:
            logger.warning("Legacy files kept because the migration was incomplete")

        logger.info("✓ Legacy project migrated to 'default'")
        return True


__all__ = ["ProjectRegistry", "DEFAULT_PROJECT_NAME", "LEGACY_PROJECT_NAME"]
