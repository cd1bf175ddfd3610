"""Project-scoped SQLite storage for generated and uploaded artifacts.

One database file per project (see ``infrastructure.namespaces``). Each record
kind lives in its own table keyed by record id, with an index on ``owner_id``
for clip/element lookups. The full record is stored as a JSON payload so new
fields never need a schema change; only new kinds or indexes do.
"""
import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Union

from domain.exceptions import InputValidationError, NamespaceMismatchError, StorageError
from domain.models import AssetKind, AssetRecord, VideoRecord, record_from_dict
from infrastructure.logger import get_logger
from infrastructure.namespaces import store_path
from utils.data_url import estimate_payload_bytes, format_bytes

logger = get_logger(__name__)

KindLike = Union[AssetKind, str]


def _table_ddl(table: str) -> str:
    return (
        f'CREATE TABLE IF NOT EXISTS "{table}" ('
        "id TEXT PRIMARY KEY, "
        "owner_id TEXT, "
        "payload TEXT NOT NULL, "
        "created_at TEXT)"
    )


def _owner_index_ddl(table: str) -> str:
    return f'CREATE INDEX IF NOT EXISTS "idx_{table}_owner" ON "{table}" (owner_id)'


# Additive only: each entry upgrades the schema from version N-1 to N.
MIGRATIONS = [
    (1, [
        _table_ddl(AssetKind.FRAME.value),
        _owner_index_ddl(AssetKind.FRAME.value),
        _table_ddl(AssetKind.VIDEO.value),
        _owner_index_ddl(AssetKind.VIDEO.value),
    ]),
    (2, [
        _table_ddl(AssetKind.REFERENCE.value),
        _table_ddl(AssetKind.AUDIO.value),
    ]),
    (3, [
        _table_ddl(AssetKind.ELEMENT_IMAGE.value),
        _owner_index_ddl(AssetKind.ELEMENT_IMAGE.value),
    ]),
    (4, [
        _owner_index_ddl(AssetKind.REFERENCE.value),
        _owner_index_ddl(AssetKind.AUDIO.value),
    ]),
]

SCHEMA_VERSION = MIGRATIONS[-1][0]


def apply_migrations(conn: sqlite3.Connection) -> int:
    """Bring ``conn`` up to SCHEMA_VERSION. Returns the resulting version."""
    current = conn.execute("PRAGMA user_version").fetchone()[0]
    for version, statements in MIGRATIONS:
        if version <= current:
            continue
        for statement in statements:
            conn.execute(statement)
        conn.execute(f"PRAGMA user_version = {int(version)}")
        conn.commit()
        logger.debug(f"Asset schema upgraded to v{version}")
        current = version
    return current


class AssetStore:
    """Durable per-project asset storage.

    Every call resolves the active project through ``active_project_id_provider``
    and reuses a cached connection only while that id is unchanged. Callers bound
    to one project pass ``project_id`` and are refused once another project is
    active, so a session never writes into a namespace it does not own.
    """

    def __init__(self, data_dir: str, active_project_id_provider: Callable[[], str]):
        self.data_dir = data_dir
        self._active_project_id = active_project_id_provider
        self._conn: Optional[sqlite3.Connection] = None
        self._conn_project_id: Optional[str] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def db_path(self, project_id: Optional[str] = None) -> str:
        return store_path(self.data_dir, project_id or self._active_project_id())

    def _open(self, project_id: str) -> sqlite3.Connection:
        os.makedirs(self.data_dir, exist_ok=True)
        conn = sqlite3.connect(self.db_path(project_id), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            apply_migrations(conn)
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def _close_cached(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error as exc:
                logger.warning(f"Failed to close asset store for {self._conn_project_id}: {exc}")
            self._conn = None
            self._conn_project_id = None

    def _get_conn(self, project_id: str) -> sqlite3.Connection:
        if self._conn is None or self._conn_project_id != project_id:
            if self._conn is not None:
                logger.info(f"Active project changed ({self._conn_project_id} -> {project_id}), reopening asset store")
            self._close_cached()
            self._conn = self._open(project_id)
            self._conn_project_id = project_id
        return self._conn

    @contextmanager
    def _session(self, action: str, project_id: Optional[str] = None) -> Iterator[sqlite3.Connection]:
        """Lock, resolve the connection, and turn storage failures into StorageError."""
        with self._lock:
            active_id = self._active_project_id()
            if project_id is not None and project_id != active_id:
                raise NamespaceMismatchError(
                    f"Asset store {action} for project {project_id} refused, active project is {active_id}"
                )
            try:
                yield self._get_conn(active_id)
            except (sqlite3.Error, OSError) as exc:
                if self._conn is not None and self._conn.in_transaction:
                    self._conn.rollback()
                raise StorageError(f"Asset store {action} failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._close_cached()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @staticmethod
    def _table(kind: KindLike) -> str:
        return AssetKind(kind).value

    @staticmethod
    def _decode(kind: KindLike, row: sqlite3.Row) -> AssetRecord:
        return record_from_dict(AssetKind(kind), json.loads(row["payload"]))

    def put(self, record: AssetRecord, project_id: Optional[str] = None) -> None:
        """Insert or replace ``record`` by id (last write wins)."""
        if not record.id:
            raise InputValidationError("Asset record needs an id")
        table = self._table(record.kind)
        payload = json.dumps(record.to_dict())
        with self._session("write", project_id) as conn:
            with conn:
                conn.execute(
                    f'INSERT OR REPLACE INTO "{table}" (id, owner_id, payload, created_at) VALUES (?, ?, ?, ?)',
                    (record.id, record.owner_id, payload, record.created_at),
                )

    def get(self, kind: KindLike, record_id: str, project_id: Optional[str] = None) -> Optional[AssetRecord]:
        table = self._table(kind)
        with self._session("read", project_id) as conn:
            row = conn.execute(f'SELECT payload FROM "{table}" WHERE id = ?', (record_id,)).fetchone()
        return self._decode(kind, row) if row else None

    def get_all(self, kind: KindLike, project_id: Optional[str] = None) -> List[AssetRecord]:
        table = self._table(kind)
        with self._session("read", project_id) as conn:
            rows = conn.execute(f'SELECT payload FROM "{table}"').fetchall()
        return [self._decode(kind, row) for row in rows]

    def get_by_owner(self, kind: KindLike, owner_id: str) -> List[AssetRecord]:
        table = self._table(kind)
        with self._session("read") as conn:
            rows = conn.execute(
                f'SELECT payload FROM "{table}" WHERE owner_id = ?', (owner_id,)
            ).fetchall()
        return [self._decode(kind, row) for row in rows]

    def delete(self, kind: KindLike, record_id: str) -> None:
        """Remove one record; absent ids are ignored."""
        table = self._table(kind)
        with self._session("delete") as conn:
            with conn:
                conn.execute(f'DELETE FROM "{table}" WHERE id = ?', (record_id,))

    def delete_all_by_owner(self, kind: KindLike, owner_id: str, project_id: Optional[str] = None) -> int:
        """Remove every record of ``kind`` owned by ``owner_id`` in one transaction."""
        table = self._table(kind)
        with self._session("delete", project_id) as conn:
            with conn:
                cursor = conn.execute(f'DELETE FROM "{table}" WHERE owner_id = ?', (owner_id,))
        return cursor.rowcount

    def clear_all(self) -> None:
        """Wipe every kind for the active project."""
        with self._session("clear") as conn:
            with conn:
                for kind in AssetKind:
                    conn.execute(f'DELETE FROM "{kind.value}"')
        logger.info(f"Cleared all assets for project {self._conn_project_id}")

    def patch_video_status(self, video_id: str, status: str, error: Optional[str] = None,
                           project_id: Optional[str] = None) -> bool:
        """Update a stored video's status/error in place. Returns False if absent."""
        with self._lock:
            video = self.get(AssetKind.VIDEO, video_id, project_id)
            if not isinstance(video, VideoRecord):
                return False
            video.status = status
            video.error = error
            self.put(video, project_id)
        return True

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def storage_stats(self) -> Dict[str, object]:
        """Per-kind counts and an estimated size; zero counts if storage is unavailable."""
        counts: Dict[str, int] = {}
        sizes: Dict[str, float] = {}
        for kind in AssetKind:
            try:
                records = self.get_all(kind)
            except StorageError as exc:
                logger.warning(f"Storage stats unavailable for {kind.value}: {exc}")
                records = []
            counts[kind.value] = len(records)
            sizes[kind.value] = sum(estimate_payload_bytes(record.url) for record in records)

        total = sum(sizes.values())
        return {
            "counts": counts,
            "estimated_bytes": total,
            "estimated_size": format_bytes(total),
            "breakdown": {kind: format_bytes(size) for kind, size in sizes.items()},
        }

    # ------------------------------------------------------------------
    # Namespace management
    # ------------------------------------------------------------------

    def drop_namespace(self, project_id: str) -> None:
        """Delete the whole asset database of ``project_id``."""
        with self._lock:
            if self._conn_project_id == project_id:
                self._close_cached()
            path = self.db_path(project_id)
            for candidate in (path, f"{path}-journal", f"{path}-wal", f"{path}-shm"):
                if not os.path.exists(candidate):
                    continue
                try:
                    os.remove(candidate)
                except OSError as exc:
                    raise StorageError(f"Could not delete asset store {candidate}: {exc}") from exc
        logger.info(f"Dropped asset store for project {project_id}")

    def copy_namespace(self, source_path: str, project_id: str) -> None:
        """Copy an existing asset database into ``project_id``'s namespace.

        Uses the SQLite backup API so tables, indexes and user_version carry over.
        A failed copy leaves no partial destination behind.
        """
        if not os.path.exists(source_path):
            raise StorageError(f"Asset store not found: {source_path}")

        with self._lock:
            if self._conn_project_id == project_id:
                self._close_cached()
            os.makedirs(self.data_dir, exist_ok=True)
            target_path = self.db_path(project_id)
            source = None
            target = None
            try:
                source = sqlite3.connect(source_path)
                target = sqlite3.connect(target_path)
                source.backup(target)
                apply_migrations(target)
            except (sqlite3.Error, OSError) as exc:
                if target is not None:
                    target.close()
                    target = None
                if os.path.exists(target_path):
                    os.remove(target_path)
                raise StorageError(f"Copying {source_path} failed: {exc}") from exc
            finally:
                if source is not None:
                    source.close()
                if target is not None:
                    target.close()
        logger.info(f"✓ Copied asset store {source_path} -> project {project_id}")


__all__ = ["AssetStore", "apply_migrations", "MIGRATIONS", "SCHEMA_VERSION"]
