from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class MediaPolicyConfig:
    max_concurrency: int = 2
    max_retries: int = 3
    retry_delay_seconds: float = 0.0
    safety_tick_seconds: float = 5.0
    generation_timeout_seconds: float = 120.0
    enable_images: bool = True
    enable_audio: bool = True
    enable_video: bool = True
    video_above_trauma: float = 70.0
    video_above_shame: float = 70.0
    seconds_per_word: float = 0.4
    min_audio_seconds: float = 5.0


@dataclass(frozen=True)
class PlaybackConfig:
    default_volume: float = 0.7
    default_playback_rate: float = 1.0
    auto_advance: bool = False
    settle_delay_seconds: float = 0.1


@dataclass(frozen=True)
class EngineConfig:
    session_key: str = "story_loom_snapshot"
    history_window: int = 15
    history_token_budget: int = 6_000
    director_timeout_seconds: float = 90.0
    initial_location: str = "The Arrival Dock"
    fallback_narrative: str = (
        "The scene fractures. The walls around you waver like a mirage, and for a moment "
        "nothing answers your choice. Try again."
    )
    fallback_visual_prompt: str = "Abstract static, red and black noise, corrupted frame."
    fallback_choices: tuple[str, ...] = ("Steady yourself.", "Look around.")
    media: MediaPolicyConfig = field(default_factory=MediaPolicyConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)
