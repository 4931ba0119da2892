"""Composite ranking applied to similarity candidates.

Candidates are ordered, descending, by:

1. rule priority of the chunk (obligation > advisory > neutral),
2. whether the source shares a tag with the query's tag filter,
3. declared version of the source document,
4. manifest weight of the source,
5. raw cosine similarity,

and finally by their position in the snapshot.
"""

from __future__ import annotations

import re
from typing import Any, Iterable

_VERSION_PART_RE = re.compile(r"\d+|[A-Za-z]+")
_RELEASE = (0.5, 0, "")


def version_key(version: str | None) -> tuple[tuple[float, int, str], ...]:
    """Orderable form of a version string.

    Numeric parts compare as numbers, so ``1.10`` > ``1.9``; a pre-release
    suffix sorts before the plain release (``1.0rc1`` < ``1.0``).  A missing
    version sorts below everything.
    """
    if not version:
        return ()
    parts = tuple(
        (1, int(p), "") if p.isdigit() else (0, 0, p.lower())
        for p in _VERSION_PART_RE.findall(version)
    )
    return parts + (_RELEASE,)


def rank_key(hit: dict[str, Any], tags: frozenset[str] = frozenset()) -> tuple[Any, ...]:
    meta = hit.get("metadata", {})
    tag_match = 1 if tags and tags & set(meta.get("tags", ())) else 0
    return (
        meta.get("priority", 0),
        tag_match,
        version_key(meta.get("version")),
        meta.get("weight", 1.0),
        hit.get("score", 0.0),
    )


def rerank(hits: Iterable[dict[str, Any]], *, tags: Iterable[str] = (), top_k: int | None = None) -> list[dict[str, Any]]:
    """Sort *hits* by the composite key and return the first *top_k*."""
    wanted = frozenset(tags)
    ordered = sorted(hits, key=lambda h: h.get("order", 0))
    ordered.sort(key=lambda h: rank_key(h, wanted), reverse=True)
    return ordered if top_k is None else ordered[:top_k]
