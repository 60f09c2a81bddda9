from __future__ import annotations


class StoryLoomError(Exception):
    pass


class MediaGenerationError(StoryLoomError):
    pass


class VideoPreconditionError(MediaGenerationError):
    pass


class DirectorError(StoryLoomError):
    pass


class SnapshotError(StoryLoomError):
    pass


class SnapshotNotFoundError(SnapshotError):
    pass


class SnapshotCorruptError(SnapshotError):
    pass
