"""Namespace derivation: map a project id onto its storage locations.

Every function here is a pure function of the project id (and data dir), so
any component can locate a project's state document or asset database
without asking the registry.
"""
import os
import re

NAMESPACE_PREFIX = "reelcast"

REGISTRY_DB_NAME = f"{NAMESPACE_PREFIX}-projects.db"
LEGACY_STATE_KEY = f"{NAMESPACE_PREFIX}-project"
LEGACY_STORE_NAME = f"{NAMESPACE_PREFIX}-assets"

DEFAULT_PROJECT_ID = "default"


def safe_project_id(project_id: str) -> str:
    """Reduce a project id to characters that are safe inside a file name."""
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "_", str(project_id).strip())
    return cleaned or DEFAULT_PROJECT_ID


def is_safe_project_id(project_id: str) -> bool:
    """True if ``project_id`` is used verbatim in file names (no two ids can collide)."""
    return bool(project_id) and safe_project_id(project_id) == project_id


def derive_state_key(project_id: str) -> str:
    """Name of the lightweight per-project state document."""
    return f"{NAMESPACE_PREFIX}-project-{safe_project_id(project_id)}"


def derive_store_name(project_id: str) -> str:
    """Name of the per-project asset database."""
    return f"{NAMESPACE_PREFIX}-assets-{safe_project_id(project_id)}"


def state_path(data_dir: str, project_id: str) -> str:
    return os.path.join(data_dir, f"{derive_state_key(project_id)}.json")


def store_path(data_dir: str, project_id: str) -> str:
    return os.path.join(data_dir, f"{derive_store_name(project_id)}.db")


def registry_path(data_dir: str) -> str:
    return os.path.join(data_dir, REGISTRY_DB_NAME)


def legacy_state_path(data_dir: str) -> str:
    return os.path.join(data_dir, f"{LEGACY_STATE_KEY}.json")


def legacy_store_path(data_dir: str) -> str:
    return os.path.join(data_dir, f"{LEGACY_STORE_NAME}.db")


__all__ = [
    "DEFAULT_PROJECT_ID",
    "REGISTRY_DB_NAME",
    "safe_project_id",
    "is_safe_project_id",
    "derive_state_key",
    "derive_store_name",
    "state_path",
    "store_path",
    "registry_path",
    "legacy_state_path",
    "legacy_store_path",
]
