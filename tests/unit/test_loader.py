"""Unit tests for front-matter parsing and filesystem discovery."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from docpack.errors import ParseError
from docpack.ingestion.loader import FileSystemLoader, LoadReport, parse_document, split_front_matter
from docpack.ingestion.manifest import IncludeEntry, ManifestFilters, PackManifest


def _write(root: Path, rel: str, text: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


# ── Front matter ───────────────────────────────────────────────────────


class TestSplitFrontMatter:
    def test_no_block_returns_text_unchanged(self) -> None:
        assert split_front_matter("# Title\n\nBody") == ({}, "# Title\n\nBody")

    def test_block_is_parsed(self) -> None:
        data, body = split_front_matter("---\ntitle: Guide\ntags: [a, b]\n---\nBody")
        assert data == {"title": "Guide", "tags": ["a", "b"]}
        assert body == "Body"

    def test_unterminated_block_raises(self) -> None:
        with pytest.raises(ParseError, match="not terminated"):
            split_front_matter("---\ntitle: Guide\nBody", "guide.md")

    def test_non_mapping_raises(self) -> None:
        with pytest.raises(ParseError, match="mapping"):
            split_front_matter("---\n- a\n- b\n---\nBody")


class TestParseDocument:
    def test_fields_are_coerced(self) -> None:
        text = (
            "---\n"
            "id: 42\n"
            "version: 1.2\n"
            "tags: backend, api\n"
            "updated: 2024-03-01\n"
            "team: platform\n"
            "---\n"
            "# Title\n\nBody"
        )
        doc = parse_document(text, "rules/api.md", weight=2.0)

        assert doc.id == "42"
        assert doc.version == "1.2"
        assert doc.tags == frozenset({"backend", "api"})
        assert doc.front_matter.updated == date(2024, 3, 1)
        assert doc.weight == 2.0
        assert doc.headings == ((1, "Title"),)
        assert doc.metadata()["team"] == "platform"

    def test_id_defaults_to_path_without_suffix(self) -> None:
        doc = parse_document("Body only", "guides/setup.md")
        assert doc.id == "guides/setup"
        assert doc.body == "Body only"

    def test_malformed_yaml_uses_defaults_and_warns(self) -> None:
        report = LoadReport()
        doc = parse_document("---\ntitle: [unclosed\n---\nBody", "bad.md", report=report)

        assert doc.front_matter.title is None
        assert doc.body == "Body"
        assert len(report.warnings) == 1
        assert "bad.md" in report.warnings[0]

    def test_invalid_field_type_uses_defaults(self) -> None:
        report = LoadReport()
        doc = parse_document("---\nupdated: not-a-date\n---\nBody", "x.md", report=report)

        assert doc.front_matter.updated is None
        assert doc.body == "Body"
        assert report.warnings

    def test_metadata_sorts_tags(self) -> None:
        doc = parse_document("---\ntags: [zeta, alpha]\n---\n", "t.md")
        assert doc.metadata()["tags"] == ["alpha", "zeta"]

    def test_to_langchain(self) -> None:
        doc = parse_document("---\ntitle: T\n---\nHello", "t.md")
        lc = doc.to_langchain()
        assert lc.page_content == "Hello"
        assert lc.metadata["source"] == "t.md"


# ── Filesystem loader ──────────────────────────────────────────────────


class TestFileSystemLoader:
    def test_each_file_loaded_once_with_first_matching_weight(self, tmp_path: Path) -> None:
        _write(tmp_path, "rules/a.md", "A")
        _write(tmp_path, "docs/b.md", "B")
        manifest = PackManifest(
            include=(
                IncludeEntry(path="rules/*.md", weight=3.0),
                IncludeEntry(path="**/*.md", weight=1.0),
            )
        )
        loader = FileSystemLoader(tmp_path)
        docs = list(loader.load(manifest))

        assert [(d.path, d.weight) for d in docs] == [("rules/a.md", 3.0), ("docs/b.md", 1.0)]
        assert loader.report.loaded == 2

    def test_undecodable_file_is_skipped(self, tmp_path: Path) -> None:
        _write(tmp_path, "good.md", "fine")
        (tmp_path / "bad.md").write_bytes(b"\xff\xfe\xfa broken")
        loader = FileSystemLoader(tmp_path)
        docs = list(loader.load(PackManifest()))

        assert [d.path for d in docs] == ["good.md"]
        assert len(loader.report.skipped) == 1
        assert loader.report.skipped[0].startswith("bad.md")

    def test_bom_is_stripped(self, tmp_path: Path) -> None:
        (tmp_path / "bom.md").write_bytes("\ufeff---\ntitle: Bom\n---\nBody".encode("utf-8"))
        docs = list(FileSystemLoader(tmp_path).load(PackManifest()))
        assert docs[0].front_matter.title == "Bom"

    def test_tags_any_filter_excludes(self, tmp_path: Path) -> None:
        _write(tmp_path, "api.md", "---\ntags: [api]\n---\nA")
        _write(tmp_path, "ops.md", "---\ntags: [ops]\n---\nB")
        _write(tmp_path, "none.md", "C")
        manifest = PackManifest(filters=ManifestFilters(tags_any=frozenset({"api"})))
        loader = FileSystemLoader(tmp_path)
        docs = list(loader.load(manifest))

        assert [d.path for d in docs] == ["api.md"]
        assert sorted(loader.report.excluded) == ["none.md", "ops.md"]

    def test_report_resets_between_loads(self, tmp_path: Path) -> None:
        _write(tmp_path, "a.md", "A")
        loader = FileSystemLoader(tmp_path)
        list(loader.load(PackManifest()))
        list(loader.load(PackManifest()))
        assert loader.report.loaded == 1

    def test_absolute_include_is_reported_not_raised(self, tmp_path: Path) -> None:
        root = tmp_path / "pack"
        _write(root, "b.md", "B")
        _write(tmp_path, "other/a.md", "A")
        pattern = (tmp_path / "other" / "*.md").as_posix()
        manifest = PackManifest(include=(IncludeEntry(path="*.md"), IncludeEntry(path=pattern)))
        loader = FileSystemLoader(root)
        docs = list(loader.load(manifest))

        assert [d.path for d in docs] == ["b.md"]
        assert any(repr(pattern) in w for w in loader.report.warnings)

    def test_matches_outside_the_root_are_dropped(self, tmp_path: Path) -> None:
        root = tmp_path / "pack"
        _write(root, "b.md", "B")
        _write(tmp_path, "shared/a.md", "A")
        manifest = PackManifest(include=(IncludeEntry(path="*.md"), IncludeEntry(path="../shared/*.md")))
        loader = FileSystemLoader(root)
        docs = list(loader.load(manifest))

        assert [d.path for d in docs] == ["b.md"]
        assert loader.report.loaded == 1
        assert any("outside" in w for w in loader.report.warnings)
