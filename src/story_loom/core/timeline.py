from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Callable, Iterable, Optional

from .types import (
    ALL_MODALITIES,
    CoherenceReport,
    MediaStatus,
    TimelineStats,
    Turn,
    TurnMetadata,
)

logger = logging.getLogger(__name__)

CursorListener = Callable[[Optional[str], Optional[str]], None]


def _new_turn_id() -> str:
    return f"turn_{uuid.uuid4().hex}"


class TimelineStore:
    """Ordered registry of turns plus the "current turn" cursor.

    Turns are appended in ``index`` order and never reordered. Indices come
    from a counter that survives pruning, so they are never reused.
    Cursor listeners run *before* the cursor moves; the playback controller
    uses this to silence audio belonging to a turn the cursor is leaving.
    """

    def __init__(
        self,
        ledger_provider: Callable[[], dict[str, float]] | None = None,
        location_provider: Callable[[], str] | None = None,
        id_factory: Callable[[], str] = _new_turn_id,
    ):
        self._ledger_provider = ledger_provider or dict
        self._location_provider = location_provider or (lambda: "Unknown")
        self._id_factory = id_factory
        self._turns: list[Turn] = []
        self._by_id: dict[str, Turn] = {}
        self._current_turn_id: str | None = None
        self._next_index = 0
        self._cursor_listeners: list[CursorListener] = []

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def current_turn_id(self) -> str | None:
        return self._current_turn_id

    @property
    def current_turn(self) -> Turn | None:
        if self._current_turn_id is None:
            return None
        return self._by_id.get(self._current_turn_id)

    @property
    def next_index(self) -> int:
        return self._next_index

    def __len__(self) -> int:
        return len(self._turns)

    def __contains__(self, turn_id: object) -> bool:
        return turn_id in self._by_id

    def add_cursor_listener(self, listener: CursorListener) -> None:
        self._cursor_listeners.append(listener)

    def get(self, turn_id: str | None) -> Turn | None:
        if turn_id is None:
            return None
        return self._by_id.get(turn_id)

    def register_turn(
        self,
        text: str,
        visual_prompt: str,
        metadata: TurnMetadata | None = None,
    ) -> Turn:
        meta = replace(metadata) if metadata is not None else TurnMetadata()
        if meta.ledger_snapshot is None:
            meta.ledger_snapshot = dict(self._ledger_provider())
        if not meta.location or meta.location == "Unknown":
            meta.location = self._location_provider() or "Unknown"

        turn = Turn(
            id=self._id_factory(),
            index=self._next_index,
            text=text,
            visual_prompt=visual_prompt or "",
            metadata=meta,
        )
        self._next_index += 1
        self._turns.append(turn)
        self._by_id[turn.id] = turn
        self._move_cursor(turn.id)
        logger.debug("TURN REGISTERED id=%s index=%s", turn.id, turn.index)
        return turn

    def set_current(self, turn_id: str) -> bool:
        if turn_id not in self._by_id:
            logger.warning("Attempted to set current turn to non-existent id %s", turn_id)
            return False
        self._move_cursor(turn_id)
        return True

    def next(self) -> bool:
        pos = self._cursor_position()
        if pos is None or pos >= len(self._turns) - 1:
            return False
        self._move_cursor(self._turns[pos + 1].id)
        return True

    def previous(self) -> bool:
        pos = self._cursor_position()
        if pos is None or pos <= 0:
            return False
        self._move_cursor(self._turns[pos - 1].id)
        return True

    def turn_after(self, turn_id: str) -> Turn | None:
        pos = self._position(turn_id)
        if pos is None:
            return None
        if pos >= len(self._turns) - 1:
            return None
        return self._turns[pos + 1]

    def turns_after(self, turn_id: str, count: int) -> list[Turn]:
        pos = self._position(turn_id)
        if pos is None or count <= 0:
            return []
        return self._turns[pos + 1 : pos + 1 + count]

    def prune(self, keep_last_n: int) -> list[str]:
        keep = max(0, int(keep_last_n))
        if len(self._turns) <= keep:
            return []
        cut = len(self._turns) - keep
        dropped = self._turns[:cut]
        self._turns = self._turns[cut:]
        for turn in dropped:
            self._by_id.pop(turn.id, None)
        if self._current_turn_id is not None and self._current_turn_id not in self._by_id:
            fallback = self._turns[-1].id if self._turns else None
            self._move_cursor(fallback)
        logger.info("TIMELINE PRUNE dropped=%s kept=%s", len(dropped), len(self._turns))
        return [turn.id for turn in dropped]

    def stats(
        self,
        pending_media: int = 0,
        in_progress_media: int = 0,
        failed_media: int = 0,
    ) -> TimelineStats:
        total = len(self._turns)
        loaded = sum(1 for turn in self._turns if self._is_loaded(turn))
        return TimelineStats(
            total_turns=total,
            loaded_turns=loaded,
            pending_media=pending_media,
            in_progress_media=in_progress_media,
            failed_media=failed_media,
            completion_rate=(loaded / total) * 100 if total else 0.0,
        )

    def coherence_report(self, turn_id: str) -> CoherenceReport:
        turn = self._by_id.get(turn_id)
        if turn is None:
            return CoherenceReport()
        has_text = bool(turn.text)
        has_image = turn.image.is_ready
        has_audio = turn.audio.is_ready
        has_video = turn.video.is_ready
        loaded = sum(1 for flag in (has_text, has_image, has_audio, has_video) if flag)
        return CoherenceReport(
            has_text=has_text,
            has_image=has_image,
            has_audio=has_audio,
            has_video=has_video,
            is_fully_loaded=loaded == 4,
            has_errors=any(turn.slot(m).status is MediaStatus.ERROR for m in ALL_MODALITIES),
            completion_percentage=(loaded / 4) * 100,
        )

    def restore(
        self,
        turns: Iterable[Turn],
        current_turn_id: str | None,
        next_index: int,
    ) -> None:
        self._move_cursor(None)
        ordered = sorted(turns, key=lambda t: t.index)
        self._turns = list(ordered)
        self._by_id = {turn.id: turn for turn in self._turns}
        highest = self._turns[-1].index + 1 if self._turns else 0
        self._next_index = max(int(next_index), highest)
        if current_turn_id in self._by_id:
            self._current_turn_id = current_turn_id
        elif self._turns:
            self._current_turn_id = self._turns[-1].id

    def clear(self) -> None:
        self._move_cursor(None)
        self._turns = []
        self._by_id = {}
        self._next_index = 0

    def _cursor_position(self) -> int | None:
        return self._position(self._current_turn_id)

    def _position(self, turn_id: str | None) -> int | None:
        if turn_id is None or turn_id not in self._by_id:
            return None
        for pos, turn in enumerate(self._turns):
            if turn.id == turn_id:
                return pos
        return None

    def _move_cursor(self, turn_id: str | None) -> None:
        previous = self._current_turn_id
        for listener in list(self._cursor_listeners):
            listener(previous, turn_id)
        self._current_turn_id = turn_id

    @staticmethod
    def _is_loaded(turn: Turn) -> bool:
        # Video is optional: a turn that never requested it still counts as loaded.
        return (
            turn.image.is_ready
            and turn.audio.is_ready
            and turn.video.status in (MediaStatus.IDLE, MediaStatus.READY)
        )