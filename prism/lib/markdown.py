"""Markdown table documents and section editing.

Every writer in the pipeline edits a file the same way: find the table that
sits directly above a stable anchor heading (``## Changelog``), add or
replace rows in it, and leave every other byte of the file untouched.
``TableDocument`` models a file as ``preamble / header / rows / trailer``
around that table so the edit happens on a row list, not on raw offsets.
Rendering an unmodified document returns the original text exactly.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional

_SEPARATOR_RE = re.compile(r"^\|[\s\-:|]+\|\s*$")
_HEADING_RE = re.compile(r"^(#{1,6})\s")


def is_table_line(line: str) -> bool:
    return line.lstrip().startswith("|")


def is_separator_row(line: str) -> bool:
    return bool(_SEPARATOR_RE.match(line.strip())) and "-" in line


def split_cells(row: str) -> List[str]:
    """Cells of a ``| a | b |`` row, stripped, without the outer empties."""
    parts = [p.strip() for p in row.strip().split("|")]
    if parts and parts[0] == "":
        parts = parts[1:]
    if parts and parts[-1] == "":
        parts = parts[:-1]
    return parts


def first_cell(row: str) -> str:
    cells = split_cells(row)
    return cells[0] if cells else ""


def table_rows(lines: List[str]) -> List[str]:
    """Non-separator table rows among ``lines``."""
    return [l for l in lines if l.startswith("|") and not is_separator_row(l)]


def _find_anchor(lines: List[str], anchor: Optional[str]) -> Optional[int]:
    if not anchor:
        return None
    for i, line in enumerate(lines):
        if line.strip() == anchor or line.startswith(anchor + " "):
            return i
    return None


@dataclass
class TableDocument:
    """A Markdown file split around the last table before an anchor heading.

    When the anchor heading is absent the last table of the whole file is
    used. When there is no table at all, ``rows`` starts empty and inserted
    rows land right before the anchor (or at the end of the file).
    """

    preamble: List[str] = field(default_factory=list)
    header: List[str] = field(default_factory=list)
    rows: List[str] = field(default_factory=list)
    trailer: List[str] = field(default_factory=list)
    anchor_found: bool = False
    has_table: bool = False

    @classmethod
    def parse(cls, text: str, anchor: Optional[str] = None) -> "TableDocument":
        lines = text.split("\n")
        anchor_idx = _find_anchor(lines, anchor)
        limit = anchor_idx if anchor_idx is not None else len(lines)

        last = None
        for i in range(limit - 1, -1, -1):
            if is_table_line(lines[i]):
                last = i
                break

        if last is None:
            return cls(
                preamble=lines[:limit],
                trailer=lines[limit:],
                anchor_found=anchor_idx is not None,
            )

        start = last
        while start > 0 and is_table_line(lines[start - 1]):
            start -= 1

        block = lines[start:last + 1]
        header: List[str] = []
        if len(block) >= 2 and is_separator_row(block[1]):
            header, body = block[:2], block[2:]
        else:
            body = block

        return cls(
            preamble=lines[:start],
            header=header,
            rows=body,
            trailer=lines[last + 1:],
            anchor_found=anchor_idx is not None,
            has_table=True,
        )

    def render(self) -> str:
        if self.has_table or not self.rows:
            return "\n".join(self.preamble + self.header + self.rows + self.trailer)
        # rows added to a document that had no table: pad them with blank lines
        before = [""] if self.preamble and self.preamble[-1].strip() else []
        after = [""] if self.trailer and self.trailer[0].strip() else []
        return "\n".join(self.preamble + before + self.rows + after + self.trailer)

    def find_row(self, key: Any, key_fn: Callable[[str], Any] = first_cell) -> Optional[int]:
        for i, row in enumerate(self.rows):
            if key_fn(row) == key:
                return i
        return None

    def has_row(self, key: Any, key_fn: Callable[[str], Any] = first_cell) -> bool:
        return self.find_row(key, key_fn) is not None

    def replace_row(self, key: Any, new_row: str,
                    key_fn: Callable[[str], Any] = first_cell) -> bool:
        idx = self.find_row(key, key_fn)
        if idx is None:
            return False
        self.rows[idx] = new_row.strip()
        return True

    def insert_rows(self, rows: List[str]) -> None:
        """Add rows after the last existing row of the table."""
        self.rows.extend(r.strip() for r in rows)

    def append_to_end(self, rows: List[str]) -> None:
        """Append lines at the very end of the document.

        Trailing blank lines are collapsed so the result ends with exactly
        one newline after the last appended row.
        """
        if not rows:
            return
        if self.trailer:
            while self.trailer and not self.trailer[-1].strip():
                self.trailer.pop()
            self.trailer.extend(r.strip() for r in rows)
            self.trailer.append("")
        else:
            # no trailer: the table is the end of the file
            self.rows.extend(r.strip() for r in rows)
            self.trailer.append("")


def replace_section(text: str, heading: str, body: str) -> str:
    """Replace the body of ``heading`` up to the next heading of the same or
    higher level. The section is appended when the heading is missing.
    """
    lines = text.split("\n")
    level = len(heading) - len(heading.lstrip("#"))
    start = None
    for i, line in enumerate(lines):
        if line.strip() == heading.strip():
            start = i
            break
    new_body = body.strip("\n").split("\n")
    if start is None:
        stripped = text.rstrip("\n")
        prefix = stripped + "\n\n" if stripped else ""
        return prefix + heading + "\n\n" + "\n".join(new_body) + "\n"

    end = len(lines)
    for j in range(start + 1, len(lines)):
        m = _HEADING_RE.match(lines[j])
        if m and len(m.group(1)) <= level:
            end = j
            break

    replacement = [lines[start], ""] + new_body
    if end < len(lines):
        replacement.append("")
    elif lines and lines[-1] == "":
        replacement.append("")
    return "\n".join(lines[:start] + replacement + lines[end:])


def extract_section(text: str, heading: str) -> str:
    """Body text under ``heading`` up to the next heading of the same or
    higher level, stripped. Empty when the heading is missing.
    """
    lines = text.split("\n")
    level = len(heading) - len(heading.lstrip("#"))
    for i, line in enumerate(lines):
        if line.strip() == heading.strip() or line.startswith(heading + " "):
            out = []
            for nxt in lines[i + 1:]:
                m = _HEADING_RE.match(nxt)
                if m and len(m.group(1)) <= level:
                    break
                out.append(nxt)
            return "\n".join(out).strip()
    return ""


def atomic_write(path: Path, content: str) -> None:
    """Write ``content`` through a temp file and rename it into place."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(content)
    os.replace(tmp, path)
