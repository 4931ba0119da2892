"""Unit tests for Markdown normalization and the structure-aware chunker."""

from __future__ import annotations

import pytest

from docpack.errors import ChunkPolicyError
from docpack.ingestion.chunker import (
    ADVISORY,
    NEUTRAL,
    OBLIGATION,
    Chunker,
    chunk_documents,
    reassemble,
    rule_priority,
)
from docpack.ingestion.hashing import content_hash
from docpack.ingestion.manifest import ChunkPolicy
from docpack.ingestion.markdown import normalize_body, scan_headings
from docpack.ingestion.models import Document


def _paragraph(n_words: int, tag: str) -> str:
    return " ".join(f"{tag}{i}" for i in range(n_words))


def _doc(body: str, path: str = "guide.md") -> Document:
    return Document(id=path.removesuffix(".md"), path=path, body=body)


def _chunker(max_tokens: int, overlap: int) -> Chunker:
    return Chunker(ChunkPolicy(max_chunk_tokens=max_tokens, overlap_tokens=overlap))


# ── Markdown helpers ───────────────────────────────────────────────────


class TestNormalizeBody:
    def test_line_endings_and_trailing_space(self) -> None:
        assert normalize_body("a  \r\nb\rc") == "a\nb\nc"

    def test_blank_runs_collapse_outside_fences(self) -> None:
        body = "one\n\n\n\ntwo\n```\nx\n\n\ny\n```\n"
        assert normalize_body(body) == "one\n\ntwo\n```\nx\n\n\ny\n```"

    def test_unterminated_fence_is_closed(self) -> None:
        assert normalize_body("intro\n\n~~~~\ncode").endswith("code\n~~~~")

    def test_headings_inside_fences_are_ignored(self) -> None:
        body = "# Title\n\n```\n# not a heading\n```\n\n## Section ##"
        assert scan_headings(body) == ((1, "Title"), (2, "Section"))


# ── Rule priority ──────────────────────────────────────────────────────


class TestRulePriority:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Services must log in JSON.", OBLIGATION),
            ("Do not commit secrets.", OBLIGATION),
            ("You should prefer small PRs.", ADVISORY),
            ("Clients MAY cache responses.", ADVISORY),
            ("The scheduler runs nightly.", NEUTRAL),
        ],
    )
    def test_classification(self, text: str, expected: int) -> None:
        assert rule_priority(text) == expected

    def test_obligation_wins_over_advisory(self) -> None:
        assert rule_priority("You should retry, but never more than five times.") == OBLIGATION


# ── Policy validation ──────────────────────────────────────────────────


class TestPolicy:
    def test_overlap_not_below_max_is_rejected(self) -> None:
        with pytest.raises(ChunkPolicyError):
            _chunker(100, 100)

    def test_non_positive_max_is_rejected(self) -> None:
        with pytest.raises(ChunkPolicyError):
            _chunker(0, 0)

    def test_negative_overlap_is_rejected(self) -> None:
        with pytest.raises(ChunkPolicyError):
            _chunker(10, -1)

    def test_chunk_documents_validates_before_touching_input(self) -> None:
        def explode():
            raise AssertionError("documents were read")
            yield  # pragma: no cover

        with pytest.raises(ChunkPolicyError):
            chunk_documents(explode(), ChunkPolicy(max_chunk_tokens=5, overlap_tokens=9))


# ── Chunking ───────────────────────────────────────────────────────────


class TestChunker:
    def test_twelve_paragraphs_pack_with_overlap(self) -> None:
        body = "\n\n".join(_paragraph(50, f"p{i}w") for i in range(12))
        chunks = _chunker(300, 50).split(_doc(body))

        assert [c.tokens for c in chunks] == [300, 300, 100]
        assert [c.ordinal for c in chunks] == [0, 1, 2]
        # each later chunk opens with the previous chunk's last paragraph
        assert chunks[1].text.startswith(_paragraph(50, "p5w"))
        assert chunks[2].text.startswith(_paragraph(50, "p10w"))
        assert chunks[1].overlap_chars == len(_paragraph(50, "p5w"))

    def test_reassembly_is_exact(self) -> None:
        body = "\n\n".join(_paragraph(50, f"p{i}w") for i in range(12))
        chunks = _chunker(300, 50).split(_doc(body))
        assert reassemble(chunks) == normalize_body(body)

    def test_editing_one_paragraph_changes_only_its_chunk(self) -> None:
        paragraphs = [_paragraph(50, f"p{i}w") for i in range(12)]
        before = _chunker(300, 50).split(_doc("\n\n".join(paragraphs)))
        paragraphs[1] = _paragraph(50, "edited")
        after = _chunker(300, 50).split(_doc("\n\n".join(paragraphs)))

        assert [c.hash == d.hash for c, d in zip(before, after)] == [False, True, True]

    def test_oversized_code_fence_kept_whole(self) -> None:
        code = "```\n" + "\n".join(f"line{i}" for i in range(304)) + "\n```"
        chunks = _chunker(300, 50).split(_doc(code))

        assert len(chunks) == 1
        assert chunks[0].oversized is True
        assert chunks[0].tokens == 310
        assert chunks[0].text == code

    def test_no_overlap_next_to_oversized_chunk(self) -> None:
        code = "```\n" + "\n".join(f"line{i}" for i in range(40)) + "\n```"
        body = "\n\n".join([_paragraph(10, "a"), code, _paragraph(10, "b")])
        chunks = _chunker(30, 5).split(_doc(body))

        assert [c.oversized for c in chunks] == [False, True, False]
        assert all(c.overlap_chars == 0 for c in chunks)
        assert reassemble(chunks) == body

    def test_fences_balanced_in_every_chunk(self) -> None:
        parts = []
        for i in range(6):
            parts.append(_paragraph(15, f"t{i}w"))
            parts.append("```python\n" + "\n".join(f"x{i}_{j} = {j}" for j in range(4)) + "\n```")
        body = "\n\n".join(parts)
        chunks = _chunker(60, 20).split(_doc(body))

        assert len(chunks) > 1
        for chunk in chunks:
            fences = [ln for ln in chunk.text.split("\n") if ln.startswith("```")]
            assert len(fences) % 2 == 0, chunk.text
        assert reassemble(chunks) == body

    def test_long_paragraph_split_at_sentences(self) -> None:
        sentences = [_paragraph(39, f"s{i}w") + "." for i in range(3)]
        chunks = _chunker(50, 5).split(_doc(" ".join(sentences)))

        assert len(chunks) == 3
        assert all(c.tokens <= 50 for c in chunks)
        assert chunks[0].text == sentences[0]
        assert reassemble(chunks) == " ".join(sentences)

    def test_run_on_text_split_at_token_budget(self) -> None:
        body = _paragraph(120, "w")
        chunks = _chunker(50, 0).split(_doc(body))

        assert [c.tokens for c in chunks] == [50, 50, 20]
        assert reassemble(chunks) == body

    def test_heading_path_tracks_enclosing_sections(self) -> None:
        body = "# Guide\n\n## Install\n\nRun it.\n\n## Usage\n\nUse it."
        chunks = _chunker(6, 0).split(_doc(body))

        assert [c.heading_path for c in chunks] == [
            ("Guide",),
            ("Guide", "Install"),
            ("Guide", "Usage"),
        ]

    def test_hash_and_provenance(self) -> None:
        chunks = _chunker(100, 10).split(_doc("Teams must review code.", path="rules/review.md"))

        assert len(chunks) == 1
        chunk = chunks[0]
        assert chunk.doc_id == "rules/review"
        assert chunk.source == "rules/review.md"
        assert chunk.hash == content_hash("Teams must review code.")
        assert chunk.priority == OBLIGATION

    def test_empty_body_gives_no_chunks(self) -> None:
        assert _chunker(100, 10).split(_doc("\n\n  \n")) == []

    def test_chunk_documents_keeps_input_order(self) -> None:
        docs = [_doc(_paragraph(30, f"d{i}w"), path=f"d{i}.md") for i in range(8)]
        results = chunk_documents(docs, ChunkPolicy(max_chunk_tokens=20, overlap_tokens=4), workers=4)

        assert [chunks[0].source for chunks in results] == [f"d{i}.md" for i in range(8)]
        assert all(len(chunks) == 2 for chunks in results)
