from .core.audio import SimulatedAudioOutput
from .core.config import EngineConfig, MediaPolicyConfig, PlaybackConfig
from .core.engine import StoryEngine
from .core.media_queue import MediaQueue
from .core.playback import PlaybackController
from .core.ports import AudioOutputPort, DirectorPort, MediaGeneratorPort, SnapshotStorePort
from .core.state import merge_ledger_delta, reconcile_graph
from .core.timeline import TimelineStore
from .core.types import DirectorOutput, MediaStatus, Modality, SpeechResult, Turn

__all__ = [
    "StoryEngine",
    "TimelineStore",
    "MediaQueue",
    "PlaybackController",
    "SimulatedAudioOutput",
    "EngineConfig",
    "MediaPolicyConfig",
    "PlaybackConfig",
    "AudioOutputPort",
    "DirectorPort",
    "MediaGeneratorPort",
    "SnapshotStorePort",
    "merge_ledger_delta",
    "reconcile_graph",
    "DirectorOutput",
    "MediaStatus",
    "Modality",
    "SpeechResult",
    "Turn",
]
