"""Generation queue: serialize frame/video jobs against a slow provider.

Items move ``pending -> processing -> complete | pending (retry) | failed``.
A single dispatcher claims one pending item per cycle, drives it through the
provider, waits a fixed delay and repeats while the queue is running and not
paused. Pausing only withholds the next claim; an in-flight call always
finishes.

Every mutation of an item is a read-modify-write of the latest item under the
queue lock, so the dispatcher thread and callers never overwrite each other.
Whether a dispatcher is running is tracked under the same lock: it is cleared
in the critical section that ends the dispatch loop, so a start arriving at
any later moment launches a new dispatcher.
"""
import copy
import threading
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from domain.exceptions import GenerationError, NotFoundError, PreconditionFailedError
from domain.models import GenerationQueueState, JobKind, QueueItem, QueueStatus, VideoRecord, utc_now
from domain.validators import QueuePolicyInput, QueueRequestInput
from infrastructure.error_handler import format_error
from infrastructure.logger import get_logger
from services.prompt_builder import build_frame_prompt, build_motion_prompt

logger = get_logger(__name__)

ProgressCallback = Callable[[GenerationQueueState], None]

# Progress milestones (claim, before provider call, after provider call, done)
FRAME_MILESTONES = (10, 30, 80, 100)
VIDEO_MILESTONES = (10, 20, 90, 100)


class GenerationQueue:
    """Ordered backlog of generation jobs with a sequential dispatcher."""

    def __init__(
        self,
        app_state,
        provider,
        policy: Optional[QueuePolicyInput] = None,
        sleep: Callable[[float], None] = time.sleep,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """
        Args:
            app_state: ApplicationState the results are committed into
            provider: Object with ``generate_frame`` / ``generate_video`` (e.g. GeminiClient)
            policy: Retry and pacing policy (defaults: 2 retries, 0.5 s delay)
            sleep: Delay function, replaceable in tests
            progress_callback: Receives a snapshot after every mutation
        """
        policy = policy or QueuePolicyInput()
        self.app_state = app_state
        self.provider = provider
        self.max_retries = policy.max_retries
        self.inter_job_delay = policy.inter_job_delay
        self.progress_callback = progress_callback
        self._sleep = sleep

        self._state = GenerationQueueState()
        self._lock = threading.RLock()
        self._dispatching = False
        self._worker: Optional[threading.Thread] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Snapshots and notifications
    # ------------------------------------------------------------------

    def snapshot(self) -> GenerationQueueState:
        """Deep copy of the current queue state."""
        with self._lock:
            return copy.deepcopy(self._state)

    @property
    def items(self) -> List[QueueItem]:
        return self.snapshot().items

    @property
    def is_processing(self) -> bool:
        return self._state.is_processing

    @property
    def is_paused(self) -> bool:
        return self._state.is_paused

    def get(self, item_id: str) -> Optional[QueueItem]:
        with self._lock:
            item = self._state.get(item_id)
            return copy.deepcopy(item) if item else None

    def counts(self) -> Dict[str, int]:
        with self._lock:
            return self._state.counts()

    def is_clip_queued(self, clip_id: str) -> bool:
        """True if a pending or processing job targets ``clip_id``."""
        with self._lock:
            return any(item.is_active and item.clip_id == clip_id for item in self._state.items)

    def _notify(self) -> None:
        if self.progress_callback is None:
            return
        state = self.snapshot()
        try:
            self.progress_callback(state)
        except Exception as exc:
            logger.warning(f"Queue progress callback failed: {exc}", exc_info=True)

    def _update(self, item_id: str, move_to_back: bool = False, **changes: Any) -> Optional[QueueItem]:
        """Apply ``changes`` to the latest version of an item."""
        with self._lock:
            item = self._state.get(item_id)
            if item is None:
                logger.debug(f"Queue item {item_id} vanished, update dropped")
                return None
            for key, value in changes.items():
                setattr(item, key, value)
            if move_to_back:
                self._state.items.remove(item)
                self._state.items.append(item)
            result = copy.deepcopy(item)
        self._notify()
        return result

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def add_to_queue(self, requests: Iterable[Dict[str, Any]]) -> List[QueueItem]:
        """Append jobs, dropping any whose target is already pending/processing.

        Each request is a dict with ``kind`` ('frame' | 'video'), ``clip_id``,
        ``frame_type`` for frames and an optional ``prompt_override``.

        Raises:
            ValidationError: if a request is malformed
        """
        validated = [QueueRequestInput(**request) for request in requests]

        added: List[QueueItem] = []
        with self._lock:
            if self._closed:
                logger.warning("Queue is shut down, ignoring new jobs")
                return []
            for request in validated:
                existing = self._state.find_active(request.kind, request.clip_id, request.frame_type)
                if existing is not None:
                    logger.debug(f"Duplicate {request.kind} job for clip {request.clip_id} dropped")
                    continue
                item = QueueItem(
                    id=f"queue-{uuid.uuid4().hex[:12]}",
                    kind=request.kind,
                    clip_id=request.clip_id,
                    frame_type=request.frame_type,
                    prompt_override=request.prompt_override,
                )
                self._state.items.append(item)
                added.append(copy.deepcopy(item))

        if added:
            logger.info(f"Queued {len(added)} job(s)")
            self._notify()
        return added

    def enqueue_frame(self, clip_id: str, frame_type: str, prompt_override: Optional[str] = None) -> Optional[QueueItem]:
        added = self.add_to_queue([{
            "kind": JobKind.FRAME,
            "clip_id": clip_id,
            "frame_type": frame_type,
            "prompt_override": prompt_override,
        }])
        return added[0] if added else None

    def enqueue_video(self, clip_id: str) -> Optional[QueueItem]:
        added = self.add_to_queue([{"kind": JobKind.VIDEO, "clip_id": clip_id}])
        return added[0] if added else None

    # ------------------------------------------------------------------
    # Queue maintenance
    # ------------------------------------------------------------------

    def remove(self, item_id: str) -> bool:
        """Remove one item. The processing item cannot be removed."""
        with self._lock:
            item = self._state.get(item_id)
            if item is None or item.status == QueueStatus.PROCESSING:
                return False
            self._state.items.remove(item)
        self._notify()
        return True

    def clear(self) -> int:
        """Drop every item except the one being processed."""
        with self._lock:
            before = len(self._state.items)
            self._state.items = [item for item in self._state.items if item.status == QueueStatus.PROCESSING]
            removed = before - len(self._state.items)
        self._notify()
        return removed

    def clear_completed(self) -> int:
        with self._lock:
            before = len(self._state.items)
            self._state.items = [item for item in self._state.items if item.status != QueueStatus.COMPLETE]
            removed = before - len(self._state.items)
        if removed:
            self._notify()
        return removed

    def retry_failed(self) -> int:
        """Return failed items to the back of the queue with a fresh retry budget."""
        with self._lock:
            failed = [item for item in self._state.items if item.status == QueueStatus.FAILED]
            for item in failed:
                item.status = QueueStatus.PENDING
                item.retry_count = 0
                item.progress = 0
                item.error = None
                item.error_kind = None
                item.started_at = None
                item.completed_at = None
                self._state.items.remove(item)
                self._state.items.append(item)
        if failed:
            logger.info(f"Re-queued {len(failed)} failed job(s)")
            self._notify()
        return len(failed)

    # ------------------------------------------------------------------
    # Run control
    # ------------------------------------------------------------------

    def start(self, background: bool = False) -> None:
        """Mark the queue running and dispatch.

        Args:
            background: Run the dispatcher on a daemon thread instead of blocking
        """
        with self._lock:
            if self._closed:
                logger.warning("Queue is shut down, start ignored")
                return
            self._state.is_processing = True
            self._state.is_paused = False
        self._notify()
        self._dispatch(background)

    def pause(self) -> None:
        """Withhold the next claim; the in-flight job still completes."""
        with self._lock:
            self._state.is_paused = True
        logger.info("Queue paused")
        self._notify()

    def resume(self, background: bool = False) -> None:
        with self._lock:
            self._state.is_paused = False
            running = self._state.is_processing
        logger.info("Queue resumed")
        self._notify()
        if running:
            self._dispatch(background)

    def stop(self) -> None:
        with self._lock:
            self._state.is_processing = False
        self._notify()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop dispatching, refuse new jobs and wait for the worker thread."""
        with self._lock:
            self._closed = True
            self._state.is_processing = False
        worker = self._worker
        if worker is not None and worker.is_alive() and worker is not threading.current_thread():
            worker.join(timeout)
        logger.debug("Generation queue shut down")

    def _begin_dispatch(self) -> bool:
        with self._lock:
            if self._dispatching:
                return False
            self._dispatching = True
            return True

    def _dispatch(self, background: bool) -> None:
        if not self._begin_dispatch():
            logger.debug("Dispatcher already running")
            return
        if not background:
            self._run_dispatcher()
            return
        self._worker = threading.Thread(
            target=self._run_dispatcher,
            name="reelcast-queue",
            daemon=True,
        )
        self._worker.start()

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the background dispatcher finished."""
        if self._worker is not None:
            self._worker.join(timeout)

    # ------------------------------------------------------------------
    # Dispatcher
    # ------------------------------------------------------------------

    def _claim_next(self) -> Optional[QueueItem]:
        """Mark the first pending item as processing, if the queue may run.

        Returning None ends the dispatch loop, so the running flag is cleared here.
        """
        with self._lock:
            if not self._state.is_processing or self._state.is_paused or self._state.processing():
                self._dispatching = False
                return None
            item = self._state.next_pending()
            if item is None:
                self._state.is_processing = False
                self._dispatching = False
                claimed = None
            else:
                item.status = QueueStatus.PROCESSING
                item.started_at = utc_now()
                item.progress = FRAME_MILESTONES[0] if item.kind == JobKind.FRAME else VIDEO_MILESTONES[0]
                claimed = copy.deepcopy(item)
        if claimed is None:
            logger.info("✓ Generation queue drained")
        self._notify()
        return claimed

    def process_queue(self) -> None:
        """Run dispatch cycles until the queue is stopped, paused or drained.

        Only one dispatcher runs at a time; a second call returns immediately.
        """
        self._dispatch(background=False)

    def _run_dispatcher(self) -> None:
        try:
            while True:
                item = self._claim_next()
                if item is None:
                    return
                self._process_item(item)
                self._sleep(self.inter_job_delay)
        except BaseException:
            with self._lock:
                self._dispatching = False
            raise

    def _process_item(self, item: QueueItem) -> None:
        logger.info(f"Processing {item.kind} job {item.id} for clip {item.clip_id}")
        try:
            if item.kind == JobKind.FRAME:
                self._run_frame_job(item)
            else:
                self._run_video_job(item)
        except Exception as exc:
            self._handle_failure(item.id, exc)

    def _complete(self, item_id: str) -> None:
        self._update(
            item_id,
            status=QueueStatus.COMPLETE,
            progress=100,
            error=None,
            error_kind=None,
            completed_at=utc_now(),
        )

    def _run_frame_job(self, item: QueueItem) -> None:
        self._update(item.id, progress=FRAME_MILESTONES[1])

        clip = self.app_state.get_clip(item.clip_id)
        scene = self.app_state.get_scene(clip.scene_id) if clip else None
        if clip is None or scene is None:
            raise NotFoundError("Clip or scene not found")

        elements = self.app_state.elements_for_scene(scene)
        prompt = build_frame_prompt(
            scene,
            clip,
            item.frame_type,
            global_style=self.app_state.global_style,
            elements=elements,
            prompt_override=item.prompt_override,
        )
        frame = self.provider.generate_frame(
            prompt,
            clip.id,
            item.frame_type,
            scene.context(),
            self.app_state.global_style,
            self.app_state.model_settings.get("image"),
            self.app_state.reference_images_for_scene(scene),
        )

        self._update(item.id, progress=FRAME_MILESTONES[2])
        self.app_state.commit_frame(frame)
        self._complete(item.id)

    def _run_video_job(self, item: QueueItem) -> None:
        self._update(item.id, progress=VIDEO_MILESTONES[1])

        clip = self.app_state.get_clip(item.clip_id)
        if clip is None:
            raise NotFoundError("Clip not found")
        scene = self.app_state.get_scene(clip.scene_id)

        start_frame = self.app_state.start_frame_for(clip.id)
        if start_frame is None:
            raise PreconditionFailedError("Start frame required for video generation")
        end_frame = self.app_state.end_frame_for(clip.id)
        motion_prompt = build_motion_prompt(scene)
        model = self.app_state.model_settings.get("video")

        # One record per job: "generating" while the provider runs, patched on failure.
        video_id = f"video-{item.id}"
        self.app_state.begin_video(VideoRecord(
            id=video_id,
            owner_id=clip.id,
            start_frame_id=start_frame.id,
            end_frame_id=end_frame.id if end_frame else None,
            motion_prompt=motion_prompt,
            model=model,
        ))
        try:
            video = self.provider.generate_video(
                clip.id,
                start_frame.url,
                end_frame.url if end_frame else None,
                motion_prompt,
                scene.context() if scene else None,
                model,
                self.app_state.global_style,
            )
        except Exception as exc:
            self.app_state.update_video_status(video_id, "failed", format_error(exc))
            raise
        video.id = video_id
        video.start_frame_id = start_frame.id
        video.end_frame_id = end_frame.id if end_frame else None

        self._update(item.id, progress=VIDEO_MILESTONES[2])
        self.app_state.commit_video(video)
        self._complete(item.id)

    def _handle_failure(self, item_id: str, exc: Exception) -> None:
        message = format_error(exc)
        error_kind = exc.kind if isinstance(exc, GenerationError) else GenerationError.kind
        if isinstance(exc, (GenerationError, ValidationError)):
            logger.warning(f"Job {item_id} failed: {message}")
        else:
            logger.error(f"Unexpected error in job {item_id}: {exc}", exc_info=True)

        with self._lock:
            current = self._state.get(item_id)
            retry_count = current.retry_count if current else 0

        if current is None:
            return

        if retry_count < self.max_retries:
            attempt = retry_count + 1
            self._update(
                item_id,
                move_to_back=True,
                status=QueueStatus.PENDING,
                retry_count=attempt,
                error=f"Retry {attempt}/{self.max_retries}: {message}",
                error_kind=error_kind,
                progress=0,
            )
        else:
            self._update(
                item_id,
                status=QueueStatus.FAILED,
                error=message,
                error_kind=error_kind,
                completed_at=utc_now(),
            )
            logger.warning(f"✗ Job {item_id} failed after {retry_count} retries")


__all__ = ["GenerationQueue", "FRAME_MILESTONES", "VIDEO_MILESTONES"]
