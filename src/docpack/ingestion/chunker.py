"""Structure-aware chunking.

A body is first cut into atomic blocks (headings, list items, paragraphs,
fenced code).  Blocks are then packed greedily into chunks of at most
``max_chunk_tokens``, each chunk after the first seeded with roughly
``overlap_tokens`` from the tail of its predecessor.

Code fences are never split.  A fence larger than the budget becomes an
oversized chunk of its own, with no overlap on either side.  Prose blocks
larger than the budget are split at sentence ends and, failing that, at the
token budget.

Every chunk is an exact slice of the normalized body, so
:func:`reassemble` rebuilds the body from the chunks alone.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Sequence

from docpack.ingestion.hashing import content_hash
from docpack.ingestion.manifest import ChunkPolicy
from docpack.ingestion.markdown import LIST_ITEM_RE, closes_fence, heading, normalize_body, open_fence
from docpack.ingestion.models import Chunk, Document
from docpack.ingestion.tokens import RegexTokenCounter, TokenCounter

logger = logging.getLogger(__name__)

_SENTENCE_END_RE = re.compile(r"[.!?][\"')\]]*\s+")

_OBLIGATION_RE = re.compile(
    r"\b(?:must|shall|required|mandatory|never|always)\b|\bdo not\b|\bdon't\b",
    re.IGNORECASE,
)
_ADVISORY_RE = re.compile(
    r"\b(?:should|recommended|prefer|avoid|consider|optional)\b|\bMAY\b",
    re.IGNORECASE,
)

OBLIGATION = 2
ADVISORY = 1
NEUTRAL = 0


def rule_priority(text: str) -> int:
    """Classify *text* as obligation (2), advisory (1) or neutral (0)."""
    if _OBLIGATION_RE.search(text):
        return OBLIGATION
    if _ADVISORY_RE.search(text):
        return ADVISORY
    return NEUTRAL


@dataclass(frozen=True)
class Block:
    """An atomic span ``body[start:end]``."""

    start: int
    end: int
    kind: str  # heading | list | paragraph | code
    tokens: int
    heading_path: tuple[str, ...]


@dataclass
class _Span:
    start: int
    end: int
    first_block: int
    last_block: int
    seeded: bool = False
    oversized: bool = False


class Chunker:
    """Split document bodies according to a :class:`ChunkPolicy`.

    Parameters
    ----------
    policy:
        Token bounds.  Checked immediately; an invalid policy raises
        :class:`~docpack.errors.ChunkPolicyError`.
    counter:
        Token counter, :class:`RegexTokenCounter` by default.
    """

    def __init__(self, policy: ChunkPolicy, counter: TokenCounter | None = None) -> None:
        self.policy = policy.check()
        self.counter = counter or RegexTokenCounter()

    @property
    def max_tokens(self) -> int:
        return self.policy.max_chunk_tokens

    @property
    def overlap_tokens(self) -> int:
        return self.policy.overlap_tokens

    # -- public API -----------------------------------------------------------

    def split(self, document: Document) -> list[Chunk]:
        """Chunk one document.  Ordinals run from 0 without gaps."""
        body = normalize_body(document.body)
        if not body:
            return []
        blocks = self.segment(body)
        spans = self._pack(body, blocks)

        chunks: list[Chunk] = []
        prev_end = 0
        for ordinal, span in enumerate(spans):
            text = body[span.start : span.end]
            overlap = prev_end - span.start if span.seeded else 0
            chunks.append(
                Chunk(
                    doc_id=document.id,
                    source=document.path,
                    ordinal=ordinal,
                    text=text,
                    heading_path=blocks[span.first_block].heading_path,
                    tokens=self.counter.count(text),
                    hash=content_hash(text),
                    start=span.start,
                    end=span.end,
                    overlap_chars=overlap,
                    separator="" if span.seeded else body[prev_end : span.start],
                    oversized=span.oversized,
                    priority=rule_priority(text),
                )
            )
            prev_end = span.end
        return chunks

    def segment(self, body: str) -> list[Block]:
        """Cut a normalized *body* into atomic blocks."""
        lines = body.split("\n")
        offsets: list[int] = []
        pos = 0
        for line in lines:
            offsets.append(pos)
            pos += len(line) + 1

        blocks: list[Block] = []
        path: list[tuple[int, str]] = []
        i, n = 0, len(lines)
        while i < n:
            line = lines[i]
            if not line:
                i += 1
                continue
            fence = open_fence(line)
            h = heading(line) if fence is None else None
            if fence is not None:
                last = i + 1
                while last < n - 1 and not closes_fence(lines[last], fence):
                    last += 1
                last = min(last, n - 1)
                kind = "code"
            elif h is not None:
                path = [p for p in path if p[0] < h[0]] + [h]
                last = i
                kind = "heading"
            else:
                kind = "list" if LIST_ITEM_RE.match(line) else "paragraph"
                last = i
                while last + 1 < n and self._continues(lines[last + 1]):
                    last += 1

            start = offsets[i]
            end = offsets[last] + len(lines[last])
            block = Block(
                start=start,
                end=end,
                kind=kind,
                tokens=self.counter.count(body[start:end]),
                heading_path=tuple(title for _, title in path),
            )
            if kind != "code" and block.tokens > self.max_tokens:
                blocks.extend(self._split_prose(body, block))
            else:
                blocks.append(block)
            i = last + 1
        return blocks

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _continues(line: str) -> bool:
        """Whether *line* extends the paragraph or list item above it."""
        if not line:
            return False
        return open_fence(line) is None and heading(line) is None and not LIST_ITEM_RE.match(line)

    def _split_prose(self, body: str, block: Block) -> list[Block]:
        """Break an over-budget prose block at sentence ends, then at the budget."""
        text = body[block.start : block.end]
        cuts = [0] + [m.end() for m in _SENTENCE_END_RE.finditer(text)] + [len(text)]
        pieces: list[Block] = []
        for lo, hi in zip(cuts, cuts[1:]):
            sentence = text[lo:hi].rstrip()
            if not sentence:
                continue
            tokens = self.counter.count(sentence)
            if tokens <= self.max_tokens:
                pieces.append(self._sub_block(block, block.start + lo, sentence, tokens))
                continue
            offsets = self.counter.offsets(sentence)
            for k in range(0, len(offsets), self.max_tokens):
                window_end = offsets[k + self.max_tokens] if k + self.max_tokens < len(offsets) else len(sentence)
                piece = sentence[offsets[k] : window_end].rstrip()
                pieces.append(
                    self._sub_block(block, block.start + lo + offsets[k], piece, self.counter.count(piece))
                )
        return pieces

    @staticmethod
    def _sub_block(parent: Block, start: int, text: str, tokens: int) -> Block:
        return Block(
            start=start,
            end=start + len(text),
            kind=parent.kind,
            tokens=tokens,
            heading_path=parent.heading_path,
        )

    def _pack(self, body: str, blocks: Sequence[Block]) -> list[_Span]:
        spans: list[_Span] = []
        current: list[int] = []
        current_tokens = 0
        seed: tuple[int, int] | None = None  # (start offset, tokens)

        def close() -> None:
            start = seed[0] if seed is not None else blocks[current[0]].start
            spans.append(
                _Span(
                    start=start,
                    end=blocks[current[-1]].end,
                    first_block=current[0],
                    last_block=current[-1],
                    seeded=seed is not None,
                )
            )

        for idx, block in enumerate(blocks):
            if block.tokens > self.max_tokens:
                if current:
                    close()
                spans.append(_Span(block.start, block.end, idx, idx, oversized=True))
                logger.debug("Oversized %s block of %d tokens kept whole", block.kind, block.tokens)
                current, current_tokens, seed = [], 0, None
                continue

            if current and current_tokens + block.tokens > self.max_tokens:
                close()
                current = []

            if not current:
                previous = spans[-1] if spans else None
                seed = None
                if previous is not None and not previous.oversized:
                    seed = self._seed(body, blocks, previous, min(self.overlap_tokens, self.max_tokens - block.tokens))
                current_tokens = seed[1] if seed is not None else 0

            current.append(idx)
            current_tokens += block.tokens

        if current:
            close()
        return spans

    def _seed(self, body: str, blocks: Sequence[Block], previous: _Span, budget: int) -> tuple[int, int] | None:
        """Tail of *previous* to repeat at the head of the next chunk.

        Whole trailing blocks are preferred when they fill at least half of
        *budget*; otherwise the last *budget* tokens are taken.  The seed
        never begins inside a code fence.
        """
        if budget <= 0:
            return None

        taken, start = 0, None
        for idx in range(previous.last_block, previous.first_block - 1, -1):
            if taken + blocks[idx].tokens > budget:
                break
            taken += blocks[idx].tokens
            start = blocks[idx].start
        if start is not None and taken * 2 >= budget:
            return start, taken

        region = body[previous.start : previous.end]
        offsets = self.counter.offsets(region)
        start = previous.start + (offsets[-budget] if len(offsets) > budget else 0)
        for idx in range(previous.last_block + 1):
            block = blocks[idx]
            if block.kind == "code" and block.start < start < block.end:
                if idx == previous.last_block:
                    return None
                start = blocks[idx + 1].start
                break
        tokens = self.counter.count(body[start : previous.end])
        return (start, tokens) if tokens else None


def reassemble(chunks: Iterable[Chunk]) -> str:
    """Rebuild the normalized body from one document's ordered chunks."""
    return "".join(c.separator + c.text[c.overlap_chars :] for c in chunks)


def chunk_documents(
    documents: Iterable[Document],
    policy: ChunkPolicy,
    *,
    counter: TokenCounter | None = None,
    workers: int = 1,
) -> list[list[Chunk]]:
    """Split *documents* into chunks, one list per document, in input order.

    Parameters
    ----------
    documents:
        Source documents produced by a loader.
    policy:
        Chunk bounds; validated before any document is touched.
    counter:
        Token counter shared by every worker.
    workers:
        Thread count.  Documents are independent, so they are processed
        in parallel and results are returned in input order.
    """
    chunker = Chunker(policy, counter)
    if workers <= 1:
        return [chunker.split(doc) for doc in documents]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(chunker.split, documents))
