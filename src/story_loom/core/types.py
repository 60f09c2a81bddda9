from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional


class Modality(str, enum.Enum):
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"


class MediaStatus(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    ERROR = "error"


ALL_MODALITIES: tuple[Modality, ...] = (Modality.IMAGE, Modality.AUDIO, Modality.VIDEO)


@dataclass
class MediaSlot:
    """One modality's artifact state on a turn.

    ``payload`` is set exactly when ``status`` is ``READY``; every transition
    goes through the methods below so the two never drift apart.
    """

    status: MediaStatus = MediaStatus.IDLE
    payload: Optional[bytes] = None
    duration_seconds: Optional[float] = None
    error: Optional[str] = None
    retry_count: int = 0

    @property
    def is_ready(self) -> bool:
        return self.status is MediaStatus.READY

    def mark_pending(self) -> None:
        self.status = MediaStatus.PENDING
        self.payload = None
        self.duration_seconds = None
        self.error = None

    def mark_in_progress(self, retry_count: int = 0) -> None:
        self.status = MediaStatus.IN_PROGRESS
        self.payload = None
        self.duration_seconds = None
        self.error = None
        self.retry_count = retry_count

    def mark_ready(self, payload: bytes, duration_seconds: float | None = None, retry_count: int = 0) -> None:
        self.status = MediaStatus.READY
        self.payload = payload
        self.duration_seconds = duration_seconds
        self.error = None
        self.retry_count = retry_count

    def mark_error(self, message: str) -> None:
        self.status = MediaStatus.ERROR
        self.payload = None
        self.duration_seconds = None
        self.error = message or "unknown media generation error"

    def reset(self) -> None:
        self.status = MediaStatus.IDLE
        self.payload = None
        self.duration_seconds = None
        self.error = None
        self.retry_count = 0


@dataclass
class TurnMetadata:
    ledger_snapshot: Optional[dict[str, float]] = None
    active_characters: list[str] = field(default_factory=list)
    location: str = "Unknown"
    tags: list[str] = field(default_factory=list)
    simulation_log: Optional[str] = None
    director_debug: Optional[str] = None


@dataclass
class Turn:
    id: str
    index: int
    text: str
    visual_prompt: str
    metadata: TurnMetadata = field(default_factory=TurnMetadata)
    image: MediaSlot = field(default_factory=MediaSlot)
    audio: MediaSlot = field(default_factory=MediaSlot)
    video: MediaSlot = field(default_factory=MediaSlot)

    def slot(self, modality: Modality) -> MediaSlot:
        if modality is Modality.IMAGE:
            return self.image
        if modality is Modality.AUDIO:
            return self.audio
        if modality is Modality.VIDEO:
            return self.video
        raise ValueError(f"unknown modality: {modality!r}")


@dataclass
class MediaQueueItem:
    job_id: str
    turn_id: str
    modality: Modality
    prompt: str
    retry_count: int = 0
    enqueued_at: float = 0.0
    error: Optional[str] = None

    @property
    def key(self) -> tuple[str, Modality]:
        return (self.turn_id, self.modality)


class PlaybackPhase(str, enum.Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass
class PlaybackState:
    current_playing_turn_id: Optional[str] = None
    phase: PlaybackPhase = PlaybackPhase.STOPPED
    current_time_seconds: float = 0.0
    volume: float = 0.7
    playback_rate: float = 1.0
    auto_advance: bool = False
    has_user_gesture: bool = False

    @property
    def is_playing(self) -> bool:
        return self.phase is PlaybackPhase.PLAYING


@dataclass
class TimelineStats:
    total_turns: int
    loaded_turns: int
    pending_media: int
    in_progress_media: int
    failed_media: int
    completion_rate: float


@dataclass
class CoherenceReport:
    has_text: bool = False
    has_image: bool = False
    has_audio: bool = False
    has_video: bool = False
    is_fully_loaded: bool = False
    has_errors: bool = False
    completion_percentage: float = 0.0


@dataclass
class GraphNode:
    id: str
    label: str = ""
    group: str = ""
    weight: float = 1.0


@dataclass
class GraphEdge:
    source: str
    target: str
    relation: str = ""
    weight: float = 1.0

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.target)


@dataclass
class GraphDelta:
    nodes_added: list[GraphNode] = field(default_factory=list)
    nodes_removed: list[str] = field(default_factory=list)
    edges_added: list[GraphEdge] = field(default_factory=list)
    edges_removed: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class SpeechResult:
    audio_bytes: bytes
    duration_seconds: Optional[float] = None


@dataclass
class DirectorContext:
    history: list[str]
    ledger: dict[str, float]
    graph_summary: dict[str, Any]
    location: str
    action: str


@dataclass
class DirectorOutput:
    narrative: str
    choices: list[str]
    visual_prompt: str = ""
    ledger_delta: dict[str, Any] = field(default_factory=dict)
    graph_delta: Optional[GraphDelta] = None
    location: Optional[str] = None
    active_characters: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    thought_process: Optional[str] = None
    simulation_log: Optional[str] = None


@dataclass
class ResolveActionResult:
    status: str
    turn: Optional[Turn] = None
    choices: list[str] = field(default_factory=list)
    enqueued: list[Modality] = field(default_factory=list)
    reason: Optional[str] = None


@dataclass
class SnapshotResult:
    status: str
    turns: int = 0
    reason: Optional[str] = None
