from __future__ import annotations

from typing import Callable, Protocol

from .types import DirectorContext, DirectorOutput, SpeechResult


class MediaGeneratorPort(Protocol):
    async def generate_image(self, prompt: str) -> bytes:
        ...

    async def generate_speech(self, text: str) -> SpeechResult:
        ...

    async def generate_video(self, image_bytes: bytes, prompt: str) -> bytes:
        ...


class DirectorPort(Protocol):
    async def next_turn(self, context: DirectorContext) -> DirectorOutput:
        ...


class AudioSource(Protocol):
    @property
    def position(self) -> float:
        ...

    def stop(self) -> None:
        ...

    def set_volume(self, volume: float) -> None:
        ...

    def set_playback_rate(self, rate: float) -> None:
        ...


class AudioOutputPort(Protocol):
    def open(self) -> None:
        ...

    def close(self) -> None:
        ...

    def start(
        self,
        payload: bytes,
        *,
        duration_seconds: float | None,
        offset: float,
        volume: float,
        playback_rate: float,
        on_ended: Callable[[], None],
    ) -> AudioSource:
        ...


class SnapshotStorePort(Protocol):
    def read(self, session_key: str) -> str | None:
        ...

    def write(self, session_key: str, payload: str, format_version: int) -> None:
        ...

    def delete(self, session_key: str) -> bool:
        ...
