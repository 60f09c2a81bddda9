from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Iterable

from .config import MediaPolicyConfig
from .errors import MediaGenerationError, VideoPreconditionError
from .ports import MediaGeneratorPort
from .timeline import TimelineStore
from .types import ALL_MODALITIES, MediaQueueItem, MediaStatus, Modality, SpeechResult, Turn

ReadyListener = Callable[[Turn, Modality], None]


def prompt_for(turn: Turn, modality: Modality) -> str:
    if modality is Modality.AUDIO:
        return turn.text
    return turn.visual_prompt or turn.text


def is_high_intensity(turn: Turn, config: MediaPolicyConfig) -> bool:
    snapshot = turn.metadata.ledger_snapshot or {}
    trauma = float(snapshot.get("trauma_level", 0) or 0)
    shame = float(snapshot.get("shame_level", 0) or 0)
    return trauma > config.video_above_trauma or shame > config.video_above_shame


def plan_modalities(turn: Turn, config: MediaPolicyConfig) -> list[Modality]:
    """Modalities a freshly registered turn should request, in dispatch order."""
    planned: list[Modality] = []
    if config.enable_images:
        planned.append(Modality.IMAGE)
    if config.enable_audio:
        planned.append(Modality.AUDIO)
    if config.enable_video and is_high_intensity(turn, config):
        planned.append(Modality.VIDEO)
    return planned


def estimate_speech_seconds(text: str, config: MediaPolicyConfig) -> float:
    words = len((text or "").split())
    return max(config.min_audio_seconds, words * config.seconds_per_word)


class MediaQueue:
    """Bounded-concurrency media job queue.

    Items live in exactly one of ``pending``, ``in_progress`` or ``failed``.
    A background scheduler task drains ``pending`` whenever it is woken
    (enqueue, retry, regenerate, job settlement) or the safety tick fires.
    Every queue entry carries a ``job_id``; a settling job only writes to its
    turn if the in-progress entry it was dispatched as is still there.
    """

    def __init__(
        self,
        timeline: TimelineStore,
        generator: MediaGeneratorPort,
        config: MediaPolicyConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ):
        self._timeline = timeline
        self._generator = generator
        self._config = config or MediaPolicyConfig()
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

        self._pending: list[MediaQueueItem] = []
        self._in_progress: dict[tuple[str, Modality], MediaQueueItem] = {}
        self._failed: list[MediaQueueItem] = []

        self._tasks: dict[str, asyncio.Task] = {}
        self._retry_handles: dict[str, asyncio.TimerHandle] = {}
        self._ready_listeners: list[ReadyListener] = []
        self._peak_in_progress = 0

        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._scheduler: asyncio.Task | None = None

    @property
    def config(self) -> MediaPolicyConfig:
        return self._config

    @property
    def pending(self) -> tuple[MediaQueueItem, ...]:
        return tuple(self._pending)

    @property
    def in_progress(self) -> tuple[MediaQueueItem, ...]:
        return tuple(self._in_progress.values())

    @property
    def failed(self) -> tuple[MediaQueueItem, ...]:
        return tuple(self._failed)

    @property
    def peak_in_progress(self) -> int:
        return self._peak_in_progress

    @property
    def running(self) -> bool:
        return self._scheduler is not None and not self._scheduler.done()

    def counts(self) -> tuple[int, int, int]:
        return len(self._pending), len(self._in_progress), len(self._failed)

    def add_ready_listener(self, listener: ReadyListener) -> None:
        self._ready_listeners.append(listener)

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        if self.running:
            return
        self._scheduler = asyncio.get_running_loop().create_task(
            self._run(), name="story-loom-media-scheduler"
        )
        self._wake()

    async def stop(self) -> None:
        scheduler, self._scheduler = self._scheduler, None
        for handle in self._retry_handles.values():
            handle.cancel()
        self._retry_handles.clear()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if scheduler is not None:
            scheduler.cancel()
            tasks.append(scheduler)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        # Abandoned jobs go back to idle.
        for item in self._in_progress.values():
            turn = self._timeline.get(item.turn_id)
            if turn is not None:
                turn.slot(item.modality).reset()
        self._in_progress.clear()
        self._refresh_idle()

    async def drain(self) -> None:
        """Wait until nothing is pending, in flight or waiting to be retried."""
        if not self.running:
            self.start()
        self._refresh_idle()
        await self._idle.wait()

    # -- queue operations ----------------------------------------------------

    def enqueue(self, turn_id: str, modality: Modality, prompt: str, *, force: bool = False) -> bool:
        modality = Modality(modality)
        turn = self._timeline.get(turn_id)
        if turn is None:
            self._logger.warning("Ignoring %s enqueue for unknown turn %s", modality.value, turn_id)
            return False

        key = (turn_id, modality)
        if any(item.key == key for item in self._pending) or key in self._in_progress:
            self._logger.debug("Skipping duplicate enqueue for %s on turn %s", modality.value, turn_id)
            return False

        slot = turn.slot(modality)
        parked = [item for item in self._failed if item.key == key]
        if not force:
            if slot.is_ready:
                self._logger.debug("Skipping enqueue for ready %s on turn %s", modality.value, turn_id)
                return False
            if parked:
                self._logger.debug(
                    "Skipping enqueue for failed %s on turn %s; retry or regenerate instead",
                    modality.value,
                    turn_id,
                )
                return False
        else:
            self._forget(key)
            slot.reset()

        self._pending.append(
            MediaQueueItem(
                job_id=uuid.uuid4().hex,
                turn_id=turn_id,
                modality=modality,
                prompt=prompt,
                retry_count=0,
                enqueued_at=self._clock(),
            )
        )
        slot.mark_pending()
        self._idle.clear()
        self._logger.debug("MEDIA ENQUEUE turn=%s modality=%s", turn_id, modality.value)
        self._wake()
        return True

    def retry(self, turn_id: str, modality: Modality | None = None) -> list[Modality]:
        """Move matching failed items back to pending if under the retry bound."""
        retried: list[Modality] = []
        for item in list(self._failed):
            if item.turn_id != turn_id or (modality is not None and item.modality is not Modality(modality)):
                continue
            if self._requeue_failed(item):
                retried.append(item.modality)
        return retried

    def regenerate(self, turn_id: str, modality: Modality | None = None) -> list[Modality]:
        turn = self._timeline.get(turn_id)
        if turn is None:
            self._logger.warning("Cannot regenerate media for non-existent turn %s", turn_id)
            return []

        if modality is not None:
            targets = [Modality(modality)]
        else:
            planned = set(plan_modalities(turn, self._config))
            targets = [
                m
                for m in ALL_MODALITIES
                if m in planned or turn.slot(m).status is not MediaStatus.IDLE
            ]

        enqueued: list[Modality] = []
        for target in targets:
            self._forget((turn_id, target))
            turn.slot(target).reset()
        for target in targets:
            if self.enqueue(turn_id, target, prompt_for(turn, target), force=True):
                enqueued.append(target)
        self._logger.info(
            "MEDIA REGENERATE turn=%s modalities=%s",
            turn_id,
            ",".join(m.value for m in enqueued) or "-",
        )
        return enqueued

    def discard_turns(self, turn_ids: Iterable[str]) -> int:
        doomed = set(turn_ids)
        removed = 0
        for key in [item.key for item in self._pending + self._failed] + list(self._in_progress):
            if key[0] in doomed:
                removed += self._forget(key)
        self._refresh_idle()
        return removed

    def reset(self) -> None:
        for key in [item.key for item in self._pending + self._failed] + list(self._in_progress):
            self._forget(key)
        self._pending.clear()
        self._in_progress.clear()
        self._failed.clear()
        self._refresh_idle()

    # -- scheduler -----------------------------------------------------------

    def _wake(self) -> None:
        self._wakeup.set()

    async def _run(self) -> None:
        while True:
            self._dispatch()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._config.safety_tick_seconds)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()

    def _dispatch(self) -> None:
        limit = max(1, int(self._config.max_concurrency))
        while len(self._tasks) < limit:
            item = self._next_dispatchable()
            if item is None:
                break
            turn = self._timeline.get(item.turn_id)
            if turn is None:
                self._logger.warning(
                    "Turn %s not found for %s job; dropping it", item.turn_id, item.modality.value
                )
                continue
            self._in_progress[item.key] = item
            self._peak_in_progress = max(self._peak_in_progress, len(self._in_progress))
            turn.slot(item.modality).mark_in_progress(item.retry_count)
            self._logger.info(
                "MEDIA DISPATCH turn=%s modality=%s attempt=%s",
                item.turn_id,
                item.modality.value,
                item.retry_count + 1,
            )
            self._tasks[item.job_id] = asyncio.get_running_loop().create_task(
                self._execute(item), name=f"story-loom-media-{item.modality.value}-{item.job_id[:8]}"
            )
        self._refresh_idle()

    def _next_dispatchable(self) -> MediaQueueItem | None:
        for pos, item in enumerate(self._pending):
            if item.modality is Modality.VIDEO and self._image_outstanding(item.turn_id):
                # Video animates the still; hold it until the image job settles.
                continue
            return self._pending.pop(pos)
        return None

    def _image_outstanding(self, turn_id: str) -> bool:
        key = (turn_id, Modality.IMAGE)
        return key in self._in_progress or any(item.key == key for item in self._pending)

    async def _execute(self, item: MediaQueueItem) -> None:
        try:
            payload, duration = await self._generate(item)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            self._settle_failure(
                item, f"{item.modality.value} generation timed out after {self._config.generation_timeout_seconds}s"
            )
        except Exception as exc:
            self._settle_failure(item, str(exc) or exc.__class__.__name__)
        else:
            self._settle_success(item, payload, duration)
        finally:
            self._tasks.pop(item.job_id, None)
            self._wake()
            self._refresh_idle()

    async def _generate(self, item: MediaQueueItem) -> tuple[bytes, float | None]:
        timeout = self._config.generation_timeout_seconds
        if item.modality is Modality.IMAGE:
            raw = await asyncio.wait_for(self._generator.generate_image(item.prompt), timeout)
            return _require_bytes(raw, item.modality), None

        if item.modality is Modality.AUDIO:
            result = await asyncio.wait_for(self._generator.generate_speech(item.prompt), timeout)
            if isinstance(result, SpeechResult):
                audio, duration = result.audio_bytes, result.duration_seconds
            else:
                audio, duration = result, None
            audio = _require_bytes(audio, item.modality)
            if not duration or duration <= 0:
                duration = estimate_speech_seconds(item.prompt, self._config)
            return audio, float(duration)

        turn = self._timeline.get(item.turn_id)
        if turn is None or not turn.image.is_ready or turn.image.payload is None:
            status = turn.image.status.value if turn is not None else "missing"
            raise VideoPreconditionError(
                f"cannot animate turn {item.turn_id}: image is {status}, not ready"
            )
        raw = await asyncio.wait_for(
            self._generator.generate_video(turn.image.payload, item.prompt), timeout
        )
        return _require_bytes(raw, item.modality), None

    def _settle_success(self, item: MediaQueueItem, payload: bytes, duration: float | None) -> None:
        if not self._claim_settlement(item):
            return
        turn = self._timeline.get(item.turn_id)
        if turn is None:
            self._logger.info("Turn %s was pruned before its %s finished", item.turn_id, item.modality.value)
            return
        turn.slot(item.modality).mark_ready(payload, duration, retry_count=item.retry_count)
        self._logger.info(
            "MEDIA READY turn=%s modality=%s bytes=%s retries=%s",
            item.turn_id,
            item.modality.value,
            len(payload),
            item.retry_count,
        )
        for listener in list(self._ready_listeners):
            try:
                listener(turn, item.modality)
            except Exception:
                self._logger.exception("Media ready listener failed for turn %s", item.turn_id)

    def _settle_failure(self, item: MediaQueueItem, message: str) -> None:
        if not self._claim_settlement(item):
            return
        turn = self._timeline.get(item.turn_id)
        if turn is None:
            self._logger.info("Turn %s was pruned before its %s failed", item.turn_id, item.modality.value)
            return
        item.error = message
        self._failed.append(item)
        turn.slot(item.modality).mark_error(message)
        self._logger.warning(
            "MEDIA FAILED turn=%s modality=%s attempt=%s error=%s",
            item.turn_id,
            item.modality.value,
            item.retry_count + 1,
            message,
        )
        if item.retry_count >= self._config.max_retries:
            self._logger.warning(
                "Max retries reached for %s on turn %s; parked until regenerated",
                item.modality.value,
                item.turn_id,
            )
            return
        delay = self._config.retry_delay_seconds
        if delay > 0:
            handle = asyncio.get_running_loop().call_later(delay, self._retry_job, item.job_id)
            self._retry_handles[item.job_id] = handle
        else:
            self._requeue_failed(item)

    def _claim_settlement(self, item: MediaQueueItem) -> bool:
        current = self._in_progress.get(item.key)
        if current is None or current.job_id != item.job_id:
            self._logger.debug(
                "Discarding superseded %s result for turn %s", item.modality.value, item.turn_id
            )
            return False
        del self._in_progress[item.key]
        return True

    def _retry_job(self, job_id: str) -> None:
        self._retry_handles.pop(job_id, None)
        for item in self._failed:
            if item.job_id == job_id:
                self._requeue_failed(item)
                break
        self._refresh_idle()

    def _requeue_failed(self, item: MediaQueueItem) -> bool:
        if item.retry_count >= self._config.max_retries:
            return False
        turn = self._timeline.get(item.turn_id)
        if turn is None:
            return False
        handle = self._retry_handles.pop(item.job_id, None)
        if handle is not None:
            handle.cancel()
        self._failed = [f for f in self._failed if f is not item]
        retried = MediaQueueItem(
            job_id=uuid.uuid4().hex,
            turn_id=item.turn_id,
            modality=item.modality,
            prompt=item.prompt,
            retry_count=item.retry_count + 1,
            enqueued_at=self._clock(),
        )
        self._pending.append(retried)
        turn.slot(item.modality).reset()
        self._idle.clear()
        self._logger.info(
            "MEDIA RETRY turn=%s modality=%s retry=%s/%s",
            item.turn_id,
            item.modality.value,
            retried.retry_count,
            self._config.max_retries,
        )
        self._wake()
        return True

    def _forget(self, key: tuple[str, Modality]) -> int:
        removed = 0
        kept_pending = [item for item in self._pending if item.key != key]
        removed += len(self._pending) - len(kept_pending)
        self._pending = kept_pending

        kept_failed: list[MediaQueueItem] = []
        for item in self._failed:
            if item.key == key:
                handle = self._retry_handles.pop(item.job_id, None)
                if handle is not None:
                    handle.cancel()
                removed += 1
            else:
                kept_failed.append(item)
        self._failed = kept_failed

        stale = self._in_progress.pop(key, None)
        if stale is not None:
            removed += 1
            task = self._tasks.get(stale.job_id)
            if task is not None:
                task.cancel()
        return removed

    def _refresh_idle(self) -> None:
        if self._pending or self._in_progress or self._retry_handles or self._tasks:
            self._idle.clear()
        else:
            self._idle.set()


def _require_bytes(raw: Any, modality: Modality) -> bytes:
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    if isinstance(raw, (bytes, bytearray, memoryview)):
        data = bytes(raw)
        if data:
            return data
    raise MediaGenerationError(f"Generated {modality.value} data is empty.")
