"""Workspace: owns the open project session and reloads it on project changes.

A project switch is a full teardown and reinitialisation. The running queue is
shut down and the application state closed while the outgoing project is still
active, so late commits are discarded. A fresh state and queue are then built
against the new project's namespace.
"""
from typing import Callable, List, Optional

from domain.exceptions import ProjectError
from domain.models import ProjectMetadata, QueueItem
from domain.validators import QueuePolicyInput
from infrastructure.asset_store import AssetStore
from infrastructure.config_manager import ConfigManager
from infrastructure.logger import get_logger
from infrastructure.project_registry import ProjectRegistry
from infrastructure.project_state_store import ProjectStateStore
from services.app_state import ApplicationState
from services.generation_queue import GenerationQueue, ProgressCallback

logger = get_logger(__name__)


class Workspace:
    """Entry point tying registry, application state and generation queue together."""

    def __init__(
        self,
        data_dir: str,
        provider,
        policy: Optional[QueuePolicyInput] = None,
        sleep: Optional[Callable[[float], None]] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.data_dir = data_dir
        self.provider = provider
        self.policy = policy or QueuePolicyInput()
        self._sleep = sleep
        self._progress_callback = progress_callback

        self.registry = ProjectRegistry(
            data_dir,
            on_reload=self._on_reload,
            before_switch=self._before_switch,
        )
        self.assets: AssetStore = self.registry.assets
        self.state: Optional[ApplicationState] = None
        self.queue: Optional[GenerationQueue] = None

    @classmethod
    def from_config(cls, config: ConfigManager, provider, **kwargs) -> "Workspace":
        return cls(config.get_data_dir(), provider, policy=config.get_queue_policy(), **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> ApplicationState:
        """Migrate legacy data, repair the registry and open the active project."""
        self.registry.migrate_legacy()
        self.registry.ensure_project_exists()
        return self._init_session(self.registry.get_active_project_id())

    def _init_session(self, project_id: str) -> ApplicationState:
        state = ApplicationState(project_id, self.assets, ProjectStateStore(self.data_dir))
        queue_kwargs = {"policy": self.policy, "progress_callback": self._progress_callback}
        if self._sleep is not None:
            queue_kwargs["sleep"] = self._sleep
        queue = GenerationQueue(state, self.provider, **queue_kwargs)
        state.queue = queue

        self.state = state
        self.queue = queue
        state.rehydrate_assets()
        logger.info(f"✓ Project session opened: {project_id}")
        return state

    def _teardown(self) -> None:
        if self.queue is not None:
            self.queue.shutdown(timeout=0)
        if self.state is not None:
            self.state.close()
        self.queue = None
        self.state = None

    def reload(self) -> ApplicationState:
        """Tear down the current session and reopen the registry's active project.

        To open another project use ``switch_project``; the asset store always
        follows the registry's active id.
        """
        self._teardown()
        return self._init_session(self.registry.get_active_project_id())

    def _before_switch(self, outgoing_id: str) -> None:
        logger.debug(f"Closing session of {outgoing_id} before project change")
        self._teardown()

    def _on_reload(self, project_id: str) -> None:
        self.reload()

    def close(self) -> None:
        self._teardown()
        self.assets.close()

    # ------------------------------------------------------------------
    # Project operations
    # ------------------------------------------------------------------

    @property
    def active_project(self) -> Optional[ProjectMetadata]:
        return self.registry.get_active_project()

    def list_projects(self) -> List[ProjectMetadata]:
        return self.registry.list_projects()

    def switch_project(self, project_id: str) -> bool:
        return self.registry.switch_project(project_id)

    def create_and_switch(self, name: str) -> ProjectMetadata:
        return self.registry.create_and_switch(name)

    def delete_project(self, project_id: str) -> str:
        return self.registry.delete_project(project_id)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate_missing(self, scene_id: Optional[str] = None, mode: str = "both",
                         start: bool = True, background: bool = False) -> List[QueueItem]:
        """Queue everything missing for a scene (or the project) and start the queue."""
        if self.state is None or self.queue is None:
            raise ProjectError("Workspace is not open")
        requests = self.state.missing_generation_requests(scene_id, mode)
        added = self.queue.add_to_queue(requests)
        if not added:
            logger.info("Nothing to generate")
        elif start:
            self.queue.start(background=background)
        return added


__all__ = ["Workspace"]
