from .audio import SimulatedAudioOutput, SimulatedAudioSource, pcm16_duration
from .config import EngineConfig, MediaPolicyConfig, PlaybackConfig
from .engine import StoryEngine
from .errors import (
    DirectorError,
    MediaGenerationError,
    SnapshotCorruptError,
    SnapshotError,
    SnapshotNotFoundError,
    StoryLoomError,
    VideoPreconditionError,
)
from .media_queue import MediaQueue, plan_modalities, prompt_for
from .normalize import parse_director_output, parse_graph_delta
from .playback import PlaybackController
from .ports import AudioOutputPort, AudioSource, DirectorPort, MediaGeneratorPort, SnapshotStorePort
from .snapshot import SNAPSHOT_FORMAT_VERSION, decode_session, encode_session
from .state import DEFAULT_LEDGER, merge_ledger_delta, reconcile_graph
from .timeline import TimelineStore
from .tokens import glm_token_count, trim_history
from .types import (
    CoherenceReport,
    DirectorContext,
    DirectorOutput,
    GraphDelta,
    GraphEdge,
    GraphNode,
    MediaQueueItem,
    MediaSlot,
    MediaStatus,
    Modality,
    PlaybackPhase,
    PlaybackState,
    ResolveActionResult,
    SnapshotResult,
    SpeechResult,
    TimelineStats,
    Turn,
    TurnMetadata,
)

__all__ = [
    "StoryEngine",
    "TimelineStore",
    "MediaQueue",
    "PlaybackController",
    "SimulatedAudioOutput",
    "SimulatedAudioSource",
    "pcm16_duration",
    "EngineConfig",
    "MediaPolicyConfig",
    "PlaybackConfig",
    "StoryLoomError",
    "MediaGenerationError",
    "VideoPreconditionError",
    "DirectorError",
    "SnapshotError",
    "SnapshotNotFoundError",
    "SnapshotCorruptError",
    "plan_modalities",
    "prompt_for",
    "parse_director_output",
    "parse_graph_delta",
    "AudioOutputPort",
    "AudioSource",
    "DirectorPort",
    "MediaGeneratorPort",
    "SnapshotStorePort",
    "SNAPSHOT_FORMAT_VERSION",
    "encode_session",
    "decode_session",
    "DEFAULT_LEDGER",
    "merge_ledger_delta",
    "reconcile_graph",
    "glm_token_count",
    "trim_history",
    "CoherenceReport",
    "DirectorContext",
    "DirectorOutput",
    "GraphDelta",
    "GraphEdge",
    "GraphNode",
    "MediaQueueItem",
    "MediaSlot",
    "MediaStatus",
    "Modality",
    "PlaybackPhase",
    "PlaybackState",
    "ResolveActionResult",
    "SnapshotResult",
    "SpeechResult",
    "TimelineStats",
    "Turn",
    "TurnMetadata",
]
