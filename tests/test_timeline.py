from __future__ import annotations

import itertools

from story_loom.core.timeline import TimelineStore
from story_loom.core.types import MediaStatus, Modality, TurnMetadata


def _store(**kwargs) -> TimelineStore:
    counter = itertools.count(1)
    return TimelineStore(id_factory=lambda: f"t{next(counter)}", **kwargs)


def test_register_assigns_increasing_indices_and_moves_cursor():
    store = _store()
    first = store.register_turn("one", "v1")
    second = store.register_turn("two", "v2")
    assert (first.index, second.index) == (0, 1)
    assert store.current_turn_id == second.id
    assert [t.id for t in store.turns] == ["t1", "t2"]
    assert all(first.slot(m).status is MediaStatus.IDLE for m in Modality)


def test_register_snapshots_ledger_and_location():
    ledger = {"trauma_level": 10.0}
    store = _store(ledger_provider=lambda: ledger, location_provider=lambda: "Chapel")
    turn = store.register_turn("text", "prompt")
    ledger["trauma_level"] = 90.0
    assert turn.metadata.ledger_snapshot == {"trauma_level": 10.0}
    assert turn.metadata.location == "Chapel"

    explicit = store.register_turn("text", "prompt", TurnMetadata(location="Cellar"))
    assert explicit.metadata.location == "Cellar"


def test_indices_survive_pruning():
    store = _store()
    for n in range(5):
        store.register_turn(f"turn {n}", "")
    dropped = store.prune(2)
    assert dropped == ["t1", "t2", "t3"]
    assert [t.index for t in store.turns] == [3, 4]
    fresh = store.register_turn("after prune", "")
    assert fresh.index == 5
    indices = [t.index for t in store.turns]
    assert indices == sorted(indices)
    assert len(set(indices)) == len(indices)


def test_prune_moves_cursor_off_dropped_turn():
    store = _store()
    for n in range(4):
        store.register_turn(f"turn {n}", "")
    store.set_current("t1")
    store.prune(2)
    assert store.current_turn_id == "t4"


def test_prune_keeps_cursor_when_it_survives():
    store = _store()
    for n in range(4):
        store.register_turn(f"turn {n}", "")
    store.set_current("t3")
    store.prune(2)
    assert store.current_turn_id == "t3"


def test_prune_noop_when_under_limit():
    store = _store()
    store.register_turn("only", "")
    assert store.prune(5) == []
    assert len(store) == 1


def test_set_current_unknown_id_is_ignored():
    store = _store()
    store.register_turn("a", "")
    assert store.set_current("nope") is False
    assert store.current_turn_id == "t1"


def test_next_and_previous_stop_at_boundaries():
    store = _store()
    for n in range(3):
        store.register_turn(f"turn {n}", "")
    assert store.next() is False
    assert store.previous() is True
    assert store.previous() is True
    assert store.current_turn_id == "t1"
    assert store.previous() is False
    assert store.current_turn_id == "t1"
    assert store.next() is True
    assert store.current_turn_id == "t2"


def test_cursor_listener_sees_previous_and_new_ids():
    store = _store()
    moves = []
    store.add_cursor_listener(lambda prev, new: moves.append((prev, new, store.current_turn_id)))
    store.register_turn("a", "")
    store.register_turn("b", "")
    store.previous()
    # Listeners run before the cursor is updated.
    assert moves == [(None, "t1", None), ("t1", "t2", "t1"), ("t2", "t1", "t2")]


def test_turns_after():
    store = _store()
    for n in range(4):
        store.register_turn(f"turn {n}", "")
    assert [t.id for t in store.turns_after("t1", 2)] == ["t2", "t3"]
    assert store.turn_after("t4") is None
    assert store.turns_after("missing", 3) == []


def test_stats_counts_loaded_turns():
    store = _store()
    a = store.register_turn("a", "")
    b = store.register_turn("b", "")
    store.register_turn("c", "")
    a.image.mark_ready(b"i")
    a.audio.mark_ready(b"a", 3.0)
    b.image.mark_ready(b"i")
    b.audio.mark_ready(b"a", 3.0)
    b.video.mark_pending()

    stats = store.stats(pending_media=1, in_progress_media=2, failed_media=0)
    assert stats.total_turns == 3
    assert stats.loaded_turns == 1
    assert stats.pending_media == 1
    assert stats.in_progress_media == 2
    assert round(stats.completion_rate, 2) == 33.33


def test_stats_on_empty_timeline():
    stats = _store().stats()
    assert stats.total_turns == 0
    assert stats.completion_rate == 0.0


def test_coherence_report():
    store = _store()
    turn = store.register_turn("hello", "")
    turn.image.mark_ready(b"i")
    turn.audio.mark_error("boom")
    report = store.coherence_report(turn.id)
    assert report.has_text and report.has_image
    assert not report.has_audio
    assert report.has_errors
    assert report.completion_percentage == 50.0
    assert not report.is_fully_loaded
    assert store.coherence_report("missing").completion_percentage == 0.0


def test_restore_and_clear():
    store = _store()
    for n in range(3):
        store.register_turn(f"turn {n}", "")
    turns = list(store.turns)

    other = _store()
    other.restore(reversed(turns), "t2", 1)
    assert [t.id for t in other.turns] == ["t1", "t2", "t3"]
    assert other.current_turn_id == "t2"
    assert other.next_index == 3

    other.restore(turns, "gone", 3)
    assert other.current_turn_id == "t3"

    other.clear()
    assert len(other) == 0
    assert other.current_turn_id is None
    assert other.next_index == 0


def test_explicit_empty_ledger_snapshot_is_kept():
    store = _store(ledger_provider=lambda: {"trauma_level": 50.0})
    turn = store.register_turn("text", "", TurnMetadata(ledger_snapshot={}))
    assert turn.metadata.ledger_snapshot == {}

    defaulted = store.register_turn("text", "", TurnMetadata())
    assert defaulted.metadata.ledger_snapshot == {"trauma_level": 50.0}
