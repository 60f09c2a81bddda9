from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import PlaybackConfig
from .ports import AudioOutputPort, AudioSource
from .timeline import TimelineStore
from .types import Modality, PlaybackPhase, PlaybackState, Turn

MIN_PLAYBACK_RATE = 0.25
MAX_PLAYBACK_RATE = 4.0


class PlaybackController:
    """Single-voice audio playback bound to turn audio artifacts.

    At most one source is ever live: every ``play`` stops and releases the
    previous source before starting the next one. Pause keeps the offset
    (``PAUSED`` phase) so ``resume`` continues where it left off.
    """

    def __init__(
        self,
        timeline: TimelineStore,
        output: AudioOutputPort,
        config: PlaybackConfig | None = None,
        *,
        logger: logging.Logger | None = None,
    ):
        self._timeline = timeline
        self._output = output
        self._config = config or PlaybackConfig()
        self._logger = logger or logging.getLogger(__name__)
        self.state = PlaybackState(
            volume=self._config.default_volume,
            playback_rate=self._config.default_playback_rate,
            auto_advance=self._config.auto_advance,
        )
        self._source: Optional[AudioSource] = None
        self._generation = 0
        self._awaiting_turn_id: str | None = None
        self._advance_handle: asyncio.TimerHandle | None = None
        timeline.add_cursor_listener(self._on_cursor_change)

    @property
    def active_source(self) -> AudioSource | None:
        return self._source

    @property
    def awaiting_turn_id(self) -> str | None:
        return self._awaiting_turn_id

    def open(self) -> None:
        self._output.open()

    def close(self) -> None:
        self.stop()
        self._output.close()

    def play(self, turn_id: str) -> bool:
        turn = self._timeline.get(turn_id)
        if turn is None or not turn.audio.is_ready or not turn.audio.payload:
            self._logger.warning("Cannot play turn %s: audio not ready", turn_id)
            return False

        offset = 0.0
        if self.state.current_playing_turn_id == turn_id and self.state.phase is PlaybackPhase.PAUSED:
            offset = self.state.current_time_seconds

        self._release_source()
        self._cancel_advance()
        self._awaiting_turn_id = None
        self._generation += 1
        generation = self._generation

        try:
            source = self._output.start(
                turn.audio.payload,
                duration_seconds=turn.audio.duration_seconds,
                offset=offset,
                volume=self.state.volume,
                playback_rate=self.state.playback_rate,
                on_ended=lambda: self._on_source_ended(generation),
            )
        except Exception:
            self._logger.exception("Error playing audio for turn %s", turn_id)
            self._reset_state()
            return False

        self._source = source
        self.state.current_playing_turn_id = turn_id
        self.state.phase = PlaybackPhase.PLAYING
        self.state.current_time_seconds = offset
        self.state.has_user_gesture = True
        self._logger.info("PLAYBACK START turn=%s offset=%.2f", turn_id, offset)
        return True

    def pause(self) -> bool:
        if self.state.phase is not PlaybackPhase.PLAYING or self._source is None:
            return False
        position = self._source.position
        self._release_source()
        self.state.phase = PlaybackPhase.PAUSED
        self.state.current_time_seconds = position
        self._logger.debug("PLAYBACK PAUSE turn=%s at=%.2f", self.state.current_playing_turn_id, position)
        return True

    def resume(self) -> bool:
        turn_id = self.state.current_playing_turn_id
        if self.state.phase is not PlaybackPhase.PAUSED or turn_id is None:
            return False
        return self.play(turn_id)

    def stop(self) -> None:
        self._release_source()
        self._cancel_advance()
        self._awaiting_turn_id = None
        self._reset_state()

    def seek(self, seconds: float) -> bool:
        turn = self._timeline.get(self.state.current_playing_turn_id)
        if turn is None or self.state.phase is PlaybackPhase.STOPPED:
            return False
        limit = turn.audio.duration_seconds or seconds
        target = min(max(0.0, float(seconds)), max(0.0, limit))
        if self.state.phase is PlaybackPhase.PLAYING:
            self.pause()
            self.state.current_time_seconds = target
            return self.resume()
        self.state.current_time_seconds = target
        return True

    def set_volume(self, volume: float) -> None:
        self.state.volume = min(1.0, max(0.0, float(volume)))
        if self._source is not None:
            self._source.set_volume(self.state.volume)

    def set_playback_rate(self, rate: float) -> None:
        self.state.playback_rate = min(MAX_PLAYBACK_RATE, max(MIN_PLAYBACK_RATE, float(rate)))
        if self._source is not None:
            self._source.set_playback_rate(self.state.playback_rate)

    def set_auto_advance(self, enabled: bool) -> None:
        self.state.auto_advance = bool(enabled)
        if not enabled:
            self._cancel_advance()
            self._awaiting_turn_id = None

    def toggle_auto_advance(self) -> bool:
        self.set_auto_advance(not self.state.auto_advance)
        return self.state.auto_advance

    def mark_user_gesture(self) -> None:
        self.state.has_user_gesture = True

    def refresh_time(self) -> float:
        if self._source is not None and self.state.phase is PlaybackPhase.PLAYING:
            self.state.current_time_seconds = self._source.position
        return self.state.current_time_seconds

    def on_media_ready(self, turn: Turn, modality: Modality) -> None:
        if modality is not Modality.AUDIO or turn.id != self._awaiting_turn_id:
            return
        if not self.state.auto_advance or self._timeline.current_turn_id != turn.id:
            self._awaiting_turn_id = None
            return
        if self.state.phase is not PlaybackPhase.STOPPED:
            return
        self._awaiting_turn_id = None
        self.play(turn.id)

    def _on_source_ended(self, generation: int) -> None:
        if generation != self._generation or self._source is None:
            return
        finished = self.state.current_playing_turn_id
        self._source = None
        self._reset_state()
        self._logger.info("PLAYBACK END turn=%s", finished)

        if not self.state.auto_advance or finished is None:
            return
        if finished != self._timeline.current_turn_id or not self._timeline.next():
            return
        upcoming = self._timeline.current_turn
        if upcoming is None:
            return
        if not upcoming.audio.is_ready:
            self._awaiting_turn_id = upcoming.id
            self._logger.debug("Auto-advance waiting for audio on turn %s", upcoming.id)
            return
        delay = self._config.settle_delay_seconds
        if delay > 0:
            self._advance_handle = asyncio.get_running_loop().call_later(delay, self._auto_play, upcoming.id)
        else:
            self._auto_play(upcoming.id)

    def _auto_play(self, turn_id: str) -> None:
        self._advance_handle = None
        if not self.state.auto_advance or self._timeline.current_turn_id != turn_id:
            return
        if self.state.phase is not PlaybackPhase.STOPPED:
            return
        self.play(turn_id)

    def _on_cursor_change(self, _previous: str | None, new_turn_id: str | None) -> None:
        playing = self.state.current_playing_turn_id
        if playing is not None and playing != new_turn_id and self.state.phase is not PlaybackPhase.STOPPED:
            self._logger.debug("Cursor left turn %s; stopping its audio", playing)
            self.stop()
        if self._awaiting_turn_id is not None and self._awaiting_turn_id != new_turn_id:
            self._awaiting_turn_id = None

    def _release_source(self) -> None:
        source, self._source = self._source, None
        if source is None:
            return
        # Bump first so an ended signal from the stopped source is ignored.
        self._generation += 1
        try:
            source.stop()
        except Exception:
            self._logger.debug("Audio source stop failed", exc_info=True)

    def _cancel_advance(self) -> None:
        if self._advance_handle is not None:
            self._advance_handle.cancel()
            self._advance_handle = None

    def _reset_state(self) -> None:
        self.state.current_playing_turn_id = None
        self.state.phase = PlaybackPhase.STOPPED
        self.state.current_time_seconds = 0.0
