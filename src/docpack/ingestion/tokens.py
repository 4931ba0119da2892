"""Token counting used by the chunker.

Any counter works as long as it is deterministic and its counts grow with
text length.  The default counts runs of word characters and every single
punctuation mark, ignoring whitespace.  That makes counts additive across
whitespace: ``count(a + "\\n\\n" + b) == count(a) + count(b)``, which the
chunker relies on when it sums block sizes.
"""

from __future__ import annotations

import re
from typing import Protocol

_TOKEN_RE = re.compile(r"\w+|[^\w\s]")


class TokenCounter(Protocol):
    """Deterministic token counting capability."""

    def count(self, text: str) -> int:
        """Number of tokens in *text*."""
        ...

    def offsets(self, text: str) -> list[int]:
        """Start offset of every token in *text*, ascending."""
        ...


class RegexTokenCounter:
    """Word/punctuation approximation of a subword tokenizer."""

    def __init__(self, pattern: re.Pattern[str] = _TOKEN_RE) -> None:
        self._pattern = pattern

    def count(self, text: str) -> int:
        return sum(1 for _ in self._pattern.finditer(text))

    def offsets(self, text: str) -> list[int]:
        return [m.start() for m in self._pattern.finditer(text)]
