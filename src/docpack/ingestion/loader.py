"""Document loaders — discover source files and parse their front matter.

Loading never fails the run.  Undecodable files are skipped and malformed
front matter falls back to default metadata; both are recorded on the
loader's :class:`LoadReport`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Iterator

import yaml
from pydantic import ValidationError

from docpack.errors import ParseError
from docpack.ingestion.manifest import PackManifest
from docpack.ingestion.markdown import scan_headings
from docpack.ingestion.models import Document, FrontMatter

logger = logging.getLogger(__name__)

_DELIMITERS = ("---", "...")


@dataclass
class LoadReport:
    """What happened to every discovered file."""

    loaded: int = 0
    skipped: list[str] = field(default_factory=list)
    excluded: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def skip(self, path: str, reason: str) -> None:
        logger.warning("Skipping %s: %s", path, reason)
        self.skipped.append(f"{path}: {reason}")


def _closing_index(lines: list[str]) -> int | None:
    """Index of the line closing a leading front-matter block, if any."""
    if not lines or lines[0].strip() != "---":
        return None
    for idx in range(1, len(lines)):
        if lines[idx].strip() in _DELIMITERS:
            return idx
    return None


def split_front_matter(text: str, source: str = "<document>") -> tuple[dict[str, Any], str]:
    """Separate a leading YAML block from the body.

    Returns ``({}, text)`` when there is no block.  Raises
    :class:`ParseError` when a block is present but unusable; callers
    decide how to recover.
    """
    text = text.replace("\r\n", "\n")
    lines = text.split("\n")
    if lines[0].strip() != "---":
        return {}, text
    end = _closing_index(lines)
    if end is None:
        raise ParseError(source, "front matter is not terminated")

    try:
        data = yaml.safe_load("\n".join(lines[1:end]))
    except yaml.YAMLError as exc:
        raise ParseError(source, f"invalid YAML: {exc}") from exc
    body = "\n".join(lines[end + 1 :])
    if data is None:
        return {}, body
    if not isinstance(data, dict):
        raise ParseError(source, f"front matter must be a mapping, got {type(data).__name__}")
    return data, body


def parse_document(text: str, path: str, *, weight: float = 1.0, report: LoadReport | None = None) -> Document:
    """Build a :class:`Document` from decoded file *text*.

    Parameters
    ----------
    text:
        Full file contents.
    path:
        Source path relative to the pack root (POSIX separators).
    weight:
        Manifest weight for the include entry that matched the file.
    report:
        Receives a warning when the front matter is malformed.
    """
    text = text.replace("\r\n", "\n")
    body = text
    front_matter = FrontMatter()
    try:
        data, body = split_front_matter(text, path)
        front_matter = FrontMatter.model_validate(data)
    except ParseError as exc:
        _record(report, f"{exc}; using default metadata")
        # a delimited but unusable block still stays out of the body
        end = _closing_index(text.split("\n"))
        if end is not None:
            body = "\n".join(text.split("\n")[end + 1 :])
    except ValidationError as exc:
        _record(report, f"{path}: invalid front matter fields ({exc.error_count()} errors); using default metadata")

    doc_id = front_matter.id or str(PurePosixPath(path).with_suffix(""))
    return Document(
        id=doc_id,
        path=path,
        body=body,
        front_matter=front_matter,
        weight=weight,
        headings=scan_headings(body),
    )


def _record(report: LoadReport | None, message: str) -> None:
    if report is None:
        logger.warning(message)
    else:
        report.warn(message)


class Loader(ABC):
    """Source of documents for a run."""

    def __init__(self) -> None:
        self.report = LoadReport()

    @abstractmethod
    def load(self, manifest: PackManifest) -> Iterator[Document]:
        """Lazily yield every document selected by *manifest*."""
        ...


class FileSystemLoader(Loader):
    """Expand the manifest's include globs under a root directory.

    Parameters
    ----------
    root:
        Pack root; globs and document paths are relative to it.
    """

    def __init__(self, root: str | Path) -> None:
        super().__init__()
        self.root = Path(root)

    def discover(self, manifest: PackManifest) -> Iterator[tuple[Path, float]]:
        """Yield ``(file, weight)`` in manifest order, each file once.

        Files are resolved; an include that cannot be expanded, or a match
        outside the root, is reported and skipped.
        """
        root = self.root.resolve()
        seen: set[Path] = set()
        for entry in manifest.include:
            try:
                matches = sorted(p for p in self.root.glob(entry.path) if p.is_file())
            except (NotImplementedError, ValueError) as exc:
                self.report.warn(f"include {entry.path!r} ignored: {exc}")
                continue
            if not matches:
                logger.info("Include %r matched no files under %s", entry.path, self.root)
            for fpath in matches:
                resolved = fpath.resolve()
                if not resolved.is_relative_to(root):
                    self.report.warn(f"include {entry.path!r}: {fpath.as_posix()} is outside {self.root}; ignored")
                    continue
                if resolved in seen:
                    continue
                seen.add(resolved)
                yield resolved, entry.weight

    def load(self, manifest: PackManifest) -> Iterator[Document]:
        self.report = LoadReport()
        wanted = manifest.filters.tags_any
        root = self.root.resolve()
        for fpath, weight in self.discover(manifest):
            rel = fpath.relative_to(root).as_posix()
            try:
                text = fpath.read_bytes().decode("utf-8-sig")
            except OSError as exc:
                self.report.skip(rel, f"unreadable ({exc})")
                continue
            except UnicodeDecodeError as exc:
                self.report.skip(rel, f"not valid UTF-8 ({exc.reason} at byte {exc.start})")
                continue

            document = parse_document(text, rel, weight=weight, report=self.report)
            if wanted and not (document.tags & wanted):
                self.report.excluded.append(rel)
                continue
            self.report.loaded += 1
            yield document
