"""Line-level Markdown structure shared by the loader and the chunker."""

from __future__ import annotations

import re

FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})")
CLOSING_FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})\s*$")
HEADING_RE = re.compile(r"^ {0,3}(#{1,6})[ \t]+(.+?)(?:[ \t]+#+)?[ \t]*$")
LIST_ITEM_RE = re.compile(r"^\s{0,3}(?:[-*+]|\d{1,9}[.)])[ \t]+")


def open_fence(line: str) -> tuple[str, int] | None:
    """Return ``(char, length)`` when *line* opens a code fence."""
    m = FENCE_RE.match(line)
    if m is None:
        return None
    return m.group(1)[0], len(m.group(1))


def closes_fence(line: str, fence: tuple[str, int]) -> bool:
    m = CLOSING_FENCE_RE.match(line)
    return m is not None and m.group(1)[0] == fence[0] and len(m.group(1)) >= fence[1]


def heading(line: str) -> tuple[int, str] | None:
    m = HEADING_RE.match(line)
    if m is None:
        return None
    return len(m.group(1)), m.group(2).strip()


def normalize_body(text: str) -> str:
    """Canonical form of a document body.

    Line endings become ``\\n``, trailing whitespace is stripped, runs of
    blank lines outside code fences collapse to one, leading and trailing
    blank lines go, and an unterminated fence is closed.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    out: list[str] = []
    fence: tuple[str, int] | None = None
    for line in (raw.rstrip() for raw in text.split("\n")):
        if fence is not None:
            out.append(line)
            if closes_fence(line, fence):
                fence = None
            continue
        if not line and (not out or not out[-1]):
            continue
        fence = open_fence(line)
        out.append(line)
    if fence is not None:
        out.append(fence[0] * fence[1])
    while out and not out[-1]:
        out.pop()
    return "\n".join(out)


def scan_headings(body: str) -> tuple[tuple[int, str], ...]:
    """All headings of *body* in order, skipping fenced code."""
    found: list[tuple[int, str]] = []
    fence: tuple[str, int] | None = None
    for line in body.splitlines():
        if fence is not None:
            if closes_fence(line, fence):
                fence = None
            continue
        fence = open_fence(line)
        if fence is not None:
            continue
        h = heading(line)
        if h is not None:
            found.append(h)
    return tuple(found)
