from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .audio import SimulatedAudioOutput
from .config import EngineConfig
from .errors import DirectorError, SnapshotCorruptError, SnapshotNotFoundError
from .media_queue import MediaQueue, plan_modalities, prompt_for
from .normalize import normalize_session_key
from .playback import PlaybackController
from .ports import AudioOutputPort, DirectorPort, MediaGeneratorPort, SnapshotStorePort
from .snapshot import SNAPSHOT_FORMAT_VERSION, SessionSnapshot, decode_session, encode_session
from .state import default_graph, default_ledger, graph_summary, merge_ledger_delta, reconcile_graph
from .timeline import TimelineStore
from .tokens import glm_token_count, trim_history
from .types import (
    CoherenceReport,
    DirectorContext,
    DirectorOutput,
    MediaStatus,
    Modality,
    ResolveActionResult,
    SnapshotResult,
    TimelineStats,
    Turn,
    TurnMetadata,
)


class StoryEngine:
    """One interactive-fiction session.

    Player action -> Director -> ledger/graph merge -> new turn -> media jobs.
    Owns the timeline, the media queue and the playback controller; the
    audio output and the scheduler task are opened by ``start`` and released
    by ``aclose`` (also on ``reset`` for the audio output).
    """

    def __init__(
        self,
        director: DirectorPort,
        generator: MediaGeneratorPort,
        *,
        audio_output: AudioOutputPort | None = None,
        snapshot_store: SnapshotStorePort | None = None,
        config: EngineConfig | None = None,
        token_count: Callable[[str], int] = glm_token_count,
        logger: logging.Logger | None = None,
    ):
        self._config = config or EngineConfig()
        self._director = director
        self._snapshot_store = snapshot_store
        self._token_count = token_count
        self._logger = logger or logging.getLogger(__name__)

        self.ledger: dict[str, float] = default_ledger()
        self.nodes, self.edges = default_graph()
        self.location: str = self._config.initial_location
        self.choices: list[str] = []

        self.timeline = TimelineStore(
            ledger_provider=lambda: self.ledger,
            location_provider=lambda: self.location,
        )
        self.media = MediaQueue(self.timeline, generator, self._config.media)
        self.playback = PlaybackController(
            self.timeline,
            audio_output or SimulatedAudioOutput(),
            self._config.playback,
        )
        self.media.add_ready_listener(self.playback.on_media_ready)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def session_key(self) -> str:
        return normalize_session_key(self._config.session_key)

    async def __aenter__(self) -> "StoryEngine":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def start(self) -> None:
        self.playback.open()
        self.media.start()

    async def aclose(self) -> None:
        await self.media.stop()
        self.playback.close()

    # -- turns ---------------------------------------------------------------

    async def resolve_action(self, action: str) -> ResolveActionResult:
        history = trim_history(
            [turn.text for turn in self.timeline.turns],
            max_items=self._config.history_window,
            max_tokens=self._config.history_token_budget,
            token_count=self._token_count,
        )
        context = DirectorContext(
            history=history,
            ledger=dict(self.ledger),
            graph_summary=graph_summary(self.nodes, self.edges),
            location=self.location,
            action=action,
        )

        status = "ok"
        reason: str | None = None
        try:
            output = await asyncio.wait_for(
                self._director.next_turn(context),
                self._config.director_timeout_seconds,
            )
            if output is None or not (output.narrative or "").strip():
                raise DirectorError("director returned no narrative")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            reason = str(exc) or exc.__class__.__name__
            self._logger.warning("Director failed, using fallback turn: %s", reason)
            output = self._fallback_output()
            status = "fallback"

        if not output.choices:
            output.choices = list(self._config.fallback_choices)

        self.apply_director_output(output)
        turn = self.register_turn(
            output.narrative.strip(),
            output.visual_prompt,
            TurnMetadata(
                active_characters=list(output.active_characters),
                location=self.location,
                tags=list(output.tags),
                simulation_log=output.simulation_log,
                director_debug=output.thought_process,
            ),
        )
        enqueued = self.enqueue_turn_media(turn.id)
        return ResolveActionResult(
            status=status,
            turn=turn,
            choices=list(self.choices),
            enqueued=enqueued,
            reason=reason,
        )

    def apply_director_output(self, output: DirectorOutput) -> None:
        self.ledger = merge_ledger_delta(self.ledger, output.ledger_delta)
        self.nodes, self.edges = reconcile_graph(self.nodes, self.edges, output.graph_delta)
        if output.location:
            self.location = output.location
        self.choices = list(output.choices)

    def register_turn(
        self,
        text: str,
        visual_prompt: str = "",
        metadata: TurnMetadata | None = None,
    ) -> Turn:
        return self.timeline.register_turn(text, visual_prompt, metadata)

    def set_current_turn(self, turn_id: str) -> bool:
        return self.timeline.set_current(turn_id)

    def next_turn(self) -> bool:
        return self.timeline.next()

    def previous_turn(self) -> bool:
        return self.timeline.previous()

    def get_turn(self, turn_id: str) -> Turn | None:
        return self.timeline.get(turn_id)

    def timeline_stats(self) -> TimelineStats:
        pending, in_progress, failed = self.media.counts()
        return self.timeline.stats(
            pending_media=pending,
            in_progress_media=in_progress,
            failed_media=failed,
        )

    def coherence_report(self, turn_id: str) -> CoherenceReport:
        return self.timeline.coherence_report(turn_id)

    def prune(self, keep_last_n: int) -> list[str]:
        dropped = self.timeline.prune(keep_last_n)
        if dropped:
            self.media.discard_turns(dropped)
            if self.playback.state.current_playing_turn_id in dropped:
                self.playback.stop()
        return dropped

    # -- media ---------------------------------------------------------------

    def enqueue_media(
        self,
        turn_id: str,
        modality: Modality,
        prompt: str | None = None,
        *,
        force: bool = False,
    ) -> bool:
        turn = self.timeline.get(turn_id)
        if turn is None:
            self._logger.warning("Ignoring media request for unknown turn %s", turn_id)
            return False
        modality = Modality(modality)
        return self.media.enqueue(turn_id, modality, prompt or prompt_for(turn, modality), force=force)

    def enqueue_turn_media(self, turn_id: str, *, force: bool = False) -> list[Modality]:
        turn = self.timeline.get(turn_id)
        if turn is None:
            self._logger.warning("Cannot enqueue media for non-existent turn %s", turn_id)
            return []
        enqueued: list[Modality] = []
        for modality in plan_modalities(turn, self._config.media):
            if not force and turn.slot(modality).status is not MediaStatus.IDLE:
                continue
            if self.media.enqueue(turn.id, modality, prompt_for(turn, modality), force=force):
                enqueued.append(modality)
        return enqueued

    def requeue_idle_media(self) -> dict[str, list[Modality]]:
        """Enqueue planned media for every turn whose slots sit idle (e.g. after a load)."""
        out: dict[str, list[Modality]] = {}
        for turn in self.timeline.turns:
            enqueued = self.enqueue_turn_media(turn.id)
            if enqueued:
                out[turn.id] = enqueued
        return out

    def preload_upcoming_media(self, turn_id: str, count: int) -> dict[str, list[Modality]]:
        out: dict[str, list[Modality]] = {}
        for turn in self.timeline.turns_after(turn_id, count):
            enqueued = self.enqueue_turn_media(turn.id)
            if enqueued:
                out[turn.id] = enqueued
        return out

    def retry_media(self, turn_id: str, modality: Modality | None = None) -> list[Modality]:
        return self.media.retry(turn_id, modality)

    def regenerate_media(self, turn_id: str, modality: Modality | None = None) -> list[Modality]:
        return self.media.regenerate(turn_id, modality)

    def batch_regenerate_media(self, turn_ids: list[str]) -> dict[str, list[Modality]]:
        return {turn_id: self.media.regenerate(turn_id) for turn_id in turn_ids}

    async def wait_for_media(self) -> None:
        await self.media.drain()

    # -- snapshot ------------------------------------------------------------

    def save_snapshot(self) -> SnapshotResult:
        if self._snapshot_store is None:
            return SnapshotResult(status="error", reason="no_snapshot_store")
        blob = encode_session(
            SessionSnapshot(
                ledger=dict(self.ledger),
                nodes=list(self.nodes),
                edges=list(self.edges),
                location=self.location,
                turns=list(self.timeline.turns),
                current_turn_id=self.timeline.current_turn_id,
                next_index=self.timeline.next_index,
                choices=list(self.choices),
            )
        )
        try:
            self._snapshot_store.write(self.session_key, blob, SNAPSHOT_FORMAT_VERSION)
        except Exception as exc:
            self._logger.exception("Failed to save snapshot %s", self.session_key)
            return SnapshotResult(status="error", reason=f"snapshot_save_failed: {exc}")
        self._logger.info("SNAPSHOT SAVED key=%s turns=%s bytes=%s", self.session_key, len(self.timeline), len(blob))
        return SnapshotResult(status="ok", turns=len(self.timeline))

    def load_snapshot(self) -> SnapshotResult:
        if self._snapshot_store is None:
            return SnapshotResult(status="error", reason="no_snapshot_store")
        try:
            blob = self._snapshot_store.read(self.session_key)
            if blob is None:
                raise SnapshotNotFoundError(self.session_key)
            snapshot = decode_session(blob)
        except SnapshotNotFoundError:
            self._logger.warning("No snapshot found for %s", self.session_key)
            return SnapshotResult(status="error", reason="snapshot_not_found")
        except SnapshotCorruptError as exc:
            self._logger.warning("Snapshot %s is corrupt: %s", self.session_key, exc)
            return SnapshotResult(status="error", reason=f"snapshot_corrupt: {exc}")
        except Exception as exc:
            self._logger.exception("Failed to read snapshot %s", self.session_key)
            return SnapshotResult(status="error", reason=f"snapshot_load_failed: {exc}")

        self.playback.stop()
        self.media.reset()
        self.ledger = snapshot.ledger
        self.nodes = snapshot.nodes
        self.edges = snapshot.edges
        self.location = snapshot.location
        self.choices = snapshot.choices
        self.timeline.restore(snapshot.turns, snapshot.current_turn_id, snapshot.next_index)
        self._logger.info("SNAPSHOT RESTORED key=%s turns=%s", self.session_key, len(snapshot.turns))
        return SnapshotResult(status="ok", turns=len(snapshot.turns))

    def delete_snapshot(self) -> SnapshotResult:
        if self._snapshot_store is None:
            return SnapshotResult(status="error", reason="no_snapshot_store")
        try:
            removed = self._snapshot_store.delete(self.session_key)
        except Exception as exc:
            self._logger.exception("Failed to delete snapshot %s", self.session_key)
            return SnapshotResult(status="error", reason=f"snapshot_delete_failed: {exc}")
        if not removed:
            return SnapshotResult(status="error", reason="snapshot_not_found")
        self._logger.info("SNAPSHOT DELETED key=%s", self.session_key)
        return SnapshotResult(status="ok")

    def reset(self) -> None:
        self.playback.close()
        self.media.reset()
        self.timeline.clear()
        self.ledger = default_ledger()
        self.nodes, self.edges = default_graph()
        self.location = self._config.initial_location
        self.choices = []
        self.playback.open()

    def _fallback_output(self) -> DirectorOutput:
        return DirectorOutput(
            narrative=self._config.fallback_narrative,
            choices=list(self._config.fallback_choices),
            visual_prompt=self._config.fallback_visual_prompt,
            ledger_delta={},
            thought_process="Director failure.",
        )
