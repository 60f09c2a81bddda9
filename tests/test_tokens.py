from __future__ import annotations

from story_loom.core.tokens import trim_history


def test_trim_history_respects_window_and_budget():
    history = ["a" * 40, "b" * 40, "c" * 40, "d" * 40]

    def count(text):
        return len(text) // 4

    assert trim_history(history, max_items=3, max_tokens=1000, token_count=count) == history[1:]
    assert trim_history(history, max_items=10, max_tokens=25, token_count=count) == history[2:]
    assert trim_history(history, max_items=0, max_tokens=1000, token_count=count) == []


def test_trim_history_keeps_newest_entry_even_if_over_budget():
    assert trim_history(["x" * 400], max_items=5, max_tokens=1, token_count=len) == ["x" * 400]
