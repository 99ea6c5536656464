"""Incremental writers: merge validated model output into the Markdown tree.

Each shared file (abbreviation registry, groups index, structure index) is
read once, edited as a ``TableDocument`` and written back in one atomic
write. Rows are added above the anchor heading or appended at the end;
nothing else in the file changes.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Set

from prism.core.discovery import JournalEntry
from prism.core.formats import CHANGELOG_HEADING
from prism.core.parsers import GroupsPayload, is_safe_group_filename
from prism.core.scaffold import GROUPS_INDEX, render_template
from prism.lib.markdown import TableDocument, atomic_write, first_cell
from prism.lib.paths import PrismPaths
from prism.lib.text import parse_abbrev_table, read_text, read_text_safe, today_iso

logger = logging.getLogger(__name__)

_ABBREV_RE = re.compile(r"^[A-Z]{2}$")
_GROUP_KEY_RE = re.compile(r"^G(\d+)$")


def registry_row(abbrev: str, stem: str, month: str) -> str:
    return f"| {abbrev}   | {stem.ljust(37)} | {month} |"


class AbbrevRegistry:
    """The abbreviation table of ``atoms/README.md``, held in memory for a run.

    ``register`` mutates the in-memory document; ``flush`` writes it back
    once. Codes are unique: registering a taken code is refused.
    """

    def __init__(self, path: Path, text: str):
        self.path = Path(path)
        self._doc = TableDocument.parse(text)
        self.file_to_abbrev, self.codes = parse_abbrev_table(text)
        self.dirty = False

    @classmethod
    def load(cls, path: Path) -> "AbbrevRegistry":
        return cls(path, read_text_safe(path))

    @property
    def has_table(self) -> bool:
        return self._doc.has_table

    def abbrev_for(self, stem: str) -> Optional[str]:
        return self.file_to_abbrev.get(stem)

    def register(self, stem: str, abbrev: str, month: str) -> bool:
        if not _ABBREV_RE.match(abbrev):
            raise ValueError(f"abbreviation must be two uppercase letters: {abbrev!r}")
        if abbrev in self.codes:
            return False
        if not self._doc.has_table:
            return False
        self._doc.insert_rows([registry_row(abbrev, stem, month)])
        self.file_to_abbrev[stem] = abbrev
        self.codes.add(abbrev)
        self.dirty = True
        return True

    def render(self) -> str:
        return self._doc.render()

    def flush(self) -> bool:
        if not self.dirty:
            return False
        atomic_write(self.path, self.render())
        self.dirty = False
        return True


def write_atom(entry: JournalEntry, content: str, abbrev: str,
               registry: AbbrevRegistry, used_abbrevs: Set[str],
               warn: Callable[[str], None]) -> Path:
    """Write one atom file and record its abbreviation.

    The registry row is added in memory only; the caller flushes the
    registry at the end of the stage.
    """
    entry.atom_month_dir.mkdir(parents=True, exist_ok=True)
    atomic_write(entry.atom_path, content.rstrip("\n") + "\n")

    if registry.abbrev_for(entry.stem) is None:
        if not registry.register(entry.stem, abbrev, entry.month):
            warn(f"Could not add {abbrev} -> {entry.stem} to the abbreviation table; add it by hand")
    used_abbrevs.add(abbrev)
    return entry.atom_path


@dataclass
class GroupsWriteStats:
    written: int = 0
    updated: int = 0
    index_added: int = 0
    index_updated: int = 0
    changelog_added: int = 0
    skipped: List[str] = field(default_factory=list)


def group_key(row: str) -> Optional[int]:
    """Group number of an index row (``| G07 | ...`` -> 7)."""
    m = _GROUP_KEY_RE.match(first_cell(row))
    return int(m.group(1)) if m else None


def merge_index_rows(text: str, index_rows: List[str], changelog: List[str],
                     stats: GroupsWriteStats) -> str:
    """Apply index and changelog rows to the groups INDEX text."""
    doc = TableDocument.parse(text, CHANGELOG_HEADING)

    for row in index_rows:
        key = group_key(row)
        if key is None:
            logger.debug("Index row without a group id, skipped: %s", row[:80])
            continue
        idx = doc.find_row(key, group_key)
        if idx is None:
            doc.insert_rows([row])
            stats.index_added += 1
        elif doc.rows[idx].strip() != row.strip():
            doc.rows[idx] = row.strip()
            stats.index_updated += 1

    existing = {line.strip() for line in text.split("\n")}
    fresh = []
    for row in changelog:
        if row.strip() in existing:
            continue
        existing.add(row.strip())
        fresh.append(row)
    doc.append_to_end(fresh)
    stats.changelog_added += len(fresh)
    return doc.render()


def write_groups_output(paths: PrismPaths, payload: GroupsPayload,
                        log: Callable[[str], None],
                        warn: Callable[[str], None]) -> GroupsWriteStats:
    """Write group files, then merge index and changelog rows into INDEX.md.

    Applying the same payload twice leaves the files as after the first
    application.
    """
    stats = GroupsWriteStats()
    paths.groups_dir.mkdir(parents=True, exist_ok=True)

    for group in payload.groups:
        if not is_safe_group_filename(group.filename):
            warn(f"Unsafe group file name, skipped: {group.filename}")
            stats.skipped.append(group.filename)
            continue
        target = paths.groups_dir / group.filename
        is_new = not target.exists()
        atomic_write(target, group.content + "\n")
        if is_new:
            stats.written += 1
            log(f"+ created {group.filename}")
        else:
            stats.updated += 1
            log(f"+ updated {group.filename}")

    if payload.index_rows or payload.changelog:
        if paths.groups_index.exists():
            original = read_text(paths.groups_index)
        else:
            original = render_template(GROUPS_INDEX, {"date": today_iso()})
        merged = merge_index_rows(original, payload.index_rows, payload.changelog, stats)
        if merged != original or not paths.groups_index.exists():
            atomic_write(paths.groups_index, merged)
        log(f"+ INDEX.md: {stats.index_added} added, {stats.index_updated} updated, "
            f"{stats.changelog_added} changelog rows")
    return stats


def write_synthesis(paths: PrismPaths, content: str) -> Path:
    """Replace synthesis.md wholesale. Callers validate first."""
    atomic_write(paths.synthesis_path, content.rstrip("\n") + "\n")
    return paths.synthesis_path


def update_perspective_index(paths: PrismPaths, dir_name: str, name: str,
                             today: Optional[str] = None) -> bool:
    """Add a perspective row and a changelog row to ``structure/INDEX.md``.

    Returns False when the index file does not exist.
    """
    if not paths.structure_index.exists():
        return False
    today = today or today_iso()
    perspective_id = dir_name.split("-", 1)[0]
    text = read_text(paths.structure_index)
    doc = TableDocument.parse(text, CHANGELOG_HEADING)
    if not doc.has_row(perspective_id):
        doc.insert_rows([f"| {perspective_id}  | [{name}]({dir_name}/) | (TBD) | (TBD) | init |"])
    doc.append_to_end([f"| {today} | Created {dir_name} | Initialised from template |"])
    atomic_write(paths.structure_index, doc.render())
    return True

