from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)

PCM_SAMPLE_RATE = 24_000
PCM_SAMPLE_WIDTH = 2


def pcm16_duration(payload: bytes, sample_rate: int = PCM_SAMPLE_RATE) -> float:
    """Duration of mono 16-bit PCM, the format the speech generator emits."""
    frames = len(payload or b"") // PCM_SAMPLE_WIDTH
    return frames / float(sample_rate)


class SimulatedAudioSource:
    """Clock-driven stand-in for a playing buffer.

    Tracks position against the event loop clock and fires ``on_ended`` once
    the remaining duration has elapsed at the current rate. ``stop`` never
    fires ``on_ended``.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        *,
        duration_seconds: float,
        offset: float,
        volume: float,
        playback_rate: float,
        on_ended: Callable[[], None],
    ):
        self._loop = loop
        self._duration = max(0.0, duration_seconds)
        self._base_position = min(max(0.0, offset), self._duration)
        self._started_at = loop.time()
        self._rate = playback_rate if playback_rate > 0 else 1.0
        self._on_ended = on_ended
        self._handle: asyncio.TimerHandle | None = None
        self._final_position: float | None = None
        self.volume = volume
        self._schedule_end()

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def active(self) -> bool:
        return self._final_position is None

    @property
    def position(self) -> float:
        if self._final_position is not None:
            return self._final_position
        elapsed = (self._loop.time() - self._started_at) * self._rate
        return min(self._duration, self._base_position + elapsed)

    @property
    def playback_rate(self) -> float:
        return self._rate

    def stop(self) -> None:
        if self._final_position is not None:
            return
        self._final_position = self.position
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def set_volume(self, volume: float) -> None:
        self.volume = volume

    def set_playback_rate(self, rate: float) -> None:
        if self._final_position is not None or rate <= 0:
            return
        self._base_position = self.position
        self._started_at = self._loop.time()
        self._rate = rate
        self._schedule_end()

    def _schedule_end(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        remaining = (self._duration - self._base_position) / self._rate
        self._handle = self._loop.call_later(max(0.0, remaining), self._finish)

    def _finish(self) -> None:
        self._handle = None
        if self._final_position is not None:
            return
        self._final_position = self._duration
        self._on_ended()


class SimulatedAudioOutput:
    """Headless audio output used when no sound device is attached."""

    def __init__(self, sample_rate: int = PCM_SAMPLE_RATE):
        self._sample_rate = sample_rate
        self._opened = False
        self._sources: list[SimulatedAudioSource] = []

    @property
    def is_open(self) -> bool:
        return self._opened

    @property
    def active_sources(self) -> list[SimulatedAudioSource]:
        return [source for source in self._sources if source.active]

    def open(self) -> None:
        if not self._opened:
            logger.debug("Audio output opened (sample_rate=%s)", self._sample_rate)
        self._opened = True

    def close(self) -> None:
        for source in self._sources:
            source.stop()
        self._sources.clear()
        if self._opened:
            logger.debug("Audio output closed")
        self._opened = False

    def start(
        self,
        payload: bytes,
        *,
        duration_seconds: float | None,
        offset: float,
        volume: float,
        playback_rate: float,
        on_ended: Callable[[], None],
    ) -> SimulatedAudioSource:
        if not self._opened:
            self.open()
        if not payload:
            raise ValueError("cannot play an empty audio buffer")
        duration = duration_seconds if duration_seconds else pcm16_duration(payload, self._sample_rate)
        source = SimulatedAudioSource(
            asyncio.get_running_loop(),
            duration_seconds=duration,
            offset=offset,
            volume=volume,
            playback_rate=playback_rate,
            on_ended=on_ended,
        )
        self._sources = [s for s in self._sources if s.active]
        self._sources.append(source)
        return source
