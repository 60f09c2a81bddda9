from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from story_loom.core.config import EngineConfig, MediaPolicyConfig, PlaybackConfig
from story_loom.core.types import SpeechResult
from story_loom.persistence.sqlalchemy.db import build_engine, build_session_factory, create_schema
from story_loom.persistence.sqlalchemy.uow import SQLAlchemyUnitOfWork


class ScriptedGenerator:
    """Media generator whose per-modality outcomes are scripted in order.

    Each script entry is either bytes (success) or an exception instance
    (raised). Once a script runs out, calls succeed with default payloads.
    Setting ``hold`` makes every call wait on the event before answering.
    """

    def __init__(self):
        self.scripts: dict[str, list[object]] = {"image": [], "audio": [], "video": []}
        self.calls: list[tuple[str, str]] = []
        self.active = 0
        self.peak_active = 0
        self.hold: asyncio.Event | None = None
        self.speech_duration: float | None = 2.0

    def script(self, modality: str, *outcomes: object) -> "ScriptedGenerator":
        self.scripts[modality].extend(outcomes)
        return self

    async def _answer(self, modality: str, prompt: str, default: object) -> object:
        self.calls.append((modality, prompt))
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            if self.hold is not None:
                await self.hold.wait()
            else:
                await asyncio.sleep(0)
            outcome = self.scripts[modality].pop(0) if self.scripts[modality] else default
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            self.active -= 1

    async def generate_image(self, prompt: str) -> bytes:
        return await self._answer("image", prompt, b"image-bytes")

    async def generate_speech(self, text: str) -> SpeechResult:
        outcome = await self._answer("audio", text, b"\x00\x01" * 64)
        if isinstance(outcome, SpeechResult):
            return outcome
        return SpeechResult(audio_bytes=outcome, duration_seconds=self.speech_duration)

    async def generate_video(self, image_bytes: bytes, prompt: str) -> bytes:
        return await self._answer("video", prompt, b"video-from-" + image_bytes)

    def count(self, modality: str) -> int:
        return sum(1 for m, _ in self.calls if m == modality)


class ManualAudioSource:
    def __init__(self, payload: bytes, offset: float, volume: float, rate: float, on_ended: Callable[[], None]):
        self.payload = payload
        self.position = offset
        self.start_offset = offset
        self.volume = volume
        self.rate = rate
        self.stopped = False
        self._on_ended = on_ended

    def stop(self) -> None:
        self.stopped = True

    def set_volume(self, volume: float) -> None:
        self.volume = volume

    def set_playback_rate(self, rate: float) -> None:
        self.rate = rate

    def finish(self) -> None:
        """Simulate the buffer reaching its natural end."""
        self.stopped = True
        self._on_ended()


class ManualAudioOutput:
    def __init__(self):
        self.sources: list[ManualAudioSource] = []
        self.opened = False
        self.close_calls = 0

    def open(self) -> None:
        self.opened = True

    def close(self) -> None:
        for source in self.sources:
            source.stop()
        self.opened = False
        self.close_calls += 1

    def start(self, payload, *, duration_seconds, offset, volume, playback_rate, on_ended):
        source = ManualAudioSource(payload, offset, volume, playback_rate, on_ended)
        self.sources.append(source)
        return source

    @property
    def audible(self) -> list[ManualAudioSource]:
        return [s for s in self.sources if not s.stopped]


def char_tokens(text: str) -> int:
    return len(text) // 4


@pytest.fixture()
def generator():
    return ScriptedGenerator()


@pytest.fixture()
def audio_output():
    return ManualAudioOutput()


@pytest.fixture()
def engine_config():
    return EngineConfig(
        media=MediaPolicyConfig(max_concurrency=2, max_retries=3, safety_tick_seconds=0.5),
        playback=PlaybackConfig(settle_delay_seconds=0.0),
    )


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    return build_session_factory(engine)


@pytest.fixture()
def uow_factory(session_factory):
    def _factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return _factory
