from __future__ import annotations

import logging
from typing import Callable, Sequence

logger = logging.getLogger(__name__)

_glm_tokenizer = None
_glm_load_attempted = False
_GLM_MODEL_ID = "zai-org/GLM-5"


def _get_glm_tokenizer():
    """Return the cached GLM tokenizer, loading on first call."""
    global _glm_tokenizer, _glm_load_attempted
    if _glm_tokenizer is None and not _glm_load_attempted:
        _glm_load_attempted = True
        try:
            from transformers import AutoTokenizer

            _glm_tokenizer = AutoTokenizer.from_pretrained(
                _GLM_MODEL_ID,
                trust_remote_code=True,
            )
            logger.info("GLM tokenizer loaded from %s", _GLM_MODEL_ID)
        except Exception as exc:
            logger.warning("Failed to load GLM tokenizer: %s", exc)
    return _glm_tokenizer


def glm_token_count(text: str) -> int:
    """Return token count using the GLM-5 tokenizer.

    Falls back to ``len(text) // 4`` if tokenizer loading is unavailable.
    """
    tok = _get_glm_tokenizer()
    if tok is None:
        return len(text) // 4
    return len(tok.encode(text))


def trim_history(
    history: Sequence[str],
    *,
    max_items: int,
    max_tokens: int,
    token_count: Callable[[str], int] = glm_token_count,
) -> list[str]:
    """Keep the newest entries that fit both the item window and token budget."""
    window = list(history)[-max_items:] if max_items > 0 else []
    kept: list[str] = []
    used = 0
    for entry in reversed(window):
        cost = token_count(entry)
        if kept and used + cost > max_tokens:
            break
        kept.append(entry)
        used += cost
    kept.reverse()
    return kept
