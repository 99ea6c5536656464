"""Shape checks and parsers for model output.

Nothing here writes files. Validators return issues (empty means valid);
the groups parser returns empty lists for missing or malformed blocks and
leaves the fallback (print the raw output) to the caller.
"""

import re
from dataclasses import dataclass, field
from typing import List, Protocol

from prism.core.formats import (
    ATOMS_HEADING,
    CANDIDATES_HEADING,
    ID_COLUMN,
    SCQA_HEADINGS,
    SOURCE_PREFIX,
    SYNTHESIS_HEADING,
)
from prism.lib.markdown import is_separator_row

_HEADING_LINE_RE = re.compile(r"^#\s+", re.MULTILINE)
_ATOM_ID_CELL_RE = re.compile(r"\|\s*[A-Z]{2}-\d{2}\s*\|")
_GROUP_BLOCK_RE = re.compile(r"=== GROUP: (\S+\.md) ===(.*?)=== END ===", re.DOTALL)
_INDEX_BLOCK_RE = re.compile(r"=== INDEX_ROWS ===(.*?)=== END ===", re.DOTALL)
_CHANGELOG_BLOCK_RE = re.compile(r"=== CHANGELOG ===(.*?)=== END ===", re.DOTALL)
_SAFE_GROUP_NAME_RE = re.compile(r"^G\d+[-\w.]*\.md$")


def validate_atom_output(text: str) -> List[str]:
    """Return the structural problems of an atom file body."""
    issues = []
    if not _HEADING_LINE_RE.search(text):
        issues.append("missing title line (# ...)")
    if SOURCE_PREFIX not in text:
        issues.append(f"missing source line ({SOURCE_PREFIX} ...)")
    if ATOMS_HEADING not in text:
        issues.append(f"missing {ATOMS_HEADING} heading")
    if ID_COLUMN not in text:
        issues.append("missing atom table header")
    if not _ATOM_ID_CELL_RE.search(text):
        issues.append("no atom rows found (like XX-01)")
    return issues


@dataclass
class GroupBlock:
    filename: str
    content: str


@dataclass
class GroupsPayload:
    groups: List[GroupBlock] = field(default_factory=list)
    index_rows: List[str] = field(default_factory=list)
    changelog: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.groups and not self.index_rows


class GroupsOutputParser(Protocol):
    """Turns a raw model response into a GroupsPayload."""

    def parse(self, raw: str) -> GroupsPayload:
        ...


def _block_rows(body: str) -> List[str]:
    rows = []
    for line in body.strip().split("\n"):
        line = line.strip()
        if line.startswith("|") and not is_separator_row(line):
            rows.append(line)
    return rows


class DelimitedGroupsParser:
    """Parser for the ``=== GROUP: <file> === ... === END ===`` contract."""

    def parse(self, raw: str) -> GroupsPayload:
        payload = GroupsPayload()
        for m in _GROUP_BLOCK_RE.finditer(raw):
            payload.groups.append(GroupBlock(filename=m.group(1).strip(), content=m.group(2).strip()))

        m = _INDEX_BLOCK_RE.search(raw)
        if m:
            payload.index_rows = _block_rows(m.group(1))

        m = _CHANGELOG_BLOCK_RE.search(raw)
        if m:
            payload.changelog = _block_rows(m.group(1))
        return payload


def parse_groups_output(raw: str) -> GroupsPayload:
    return DelimitedGroupsParser().parse(raw)


def is_safe_group_filename(name: str) -> bool:
    """``G{NN}-slug.md`` with no path components."""
    return "/" not in name and "\\" not in name and ".." not in name \
        and bool(_SAFE_GROUP_NAME_RE.match(name))


def is_valid_synthesis(text: str) -> bool:
    lines = [l.strip() for l in text.split("\n")]
    has_title = any(l == SYNTHESIS_HEADING or l.startswith(SYNTHESIS_HEADING + " ") for l in lines)
    has_candidates = any(
        l == CANDIDATES_HEADING or l.startswith(CANDIDATES_HEADING + " ") for l in lines
    )
    return has_title and has_candidates


def is_valid_scqa(text: str) -> bool:
    """An scqa.md body carries all four S/C/Q/A headings."""
    lines = {l.strip() for l in text.split("\n")}
    return all(heading in lines for heading in SCQA_HEADINGS)
