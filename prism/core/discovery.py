"""Work discovery: which journals need atoms, which atoms need a group.

All state lives in the filesystem. An entry is outstanding when its atom
file is missing (type A) or still holds the placeholder marker (type B);
an atom is ungrouped while no group file lists a row with its prefix.
Missing directories are read as empty.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from prism.lib.paths import PrismPaths
from prism.lib.text import (
    extract_abbrev,
    is_placeholder,
    list_date_dirs,
    list_md_files,
    list_month_dirs,
    parse_abbrev_table,
    read_text,
    read_text_safe,
)

NEW = "A"
FILL = "B"

_GROUPED_ROW_RE = re.compile(r"\|\s*([A-Z]{2})-\d{2}\s*\|")
_GROUP_NUM_RE = re.compile(r"^G(\d+)")


@dataclass
class JournalEntry:
    """One journal file with outstanding atom work."""
    type: str
    stem: str
    journal_path: Path
    atom_path: Path
    atom_month_dir: Path
    date_dir: str
    month: str
    abbrev: Optional[str] = None

    @property
    def filename(self) -> str:
        return self.journal_path.name

    @property
    def is_new(self) -> bool:
        return self.type == NEW

    @property
    def label(self) -> str:
        return "new" if self.is_new else "fill"


@dataclass
class DiscoveryResult:
    entries: List[JournalEntry] = field(default_factory=list)
    used_abbrevs: Set[str] = field(default_factory=set)
    file_to_abbrev: Dict[str, str] = field(default_factory=dict)


def _iter_atom_files(paths: PrismPaths) -> List[Path]:
    out = []
    for month in list_month_dirs(paths.atoms_dir):
        month_dir = paths.atoms_dir / month
        out.extend(month_dir / f for f in list_md_files(month_dir))
    return out


def discover_journals(paths: PrismPaths, only_file: Optional[str] = None) -> DiscoveryResult:
    """Classify journal files as new (A), fill (B) or done (excluded).

    ``used_abbrevs`` holds every code already taken: registry rows plus the
    ``> Abbrev:`` lines of existing atom files, so an atom written without a
    registry row still blocks its code.
    """
    file_to_abbrev, used = parse_abbrev_table(read_text_safe(paths.atoms_readme))
    for atom_path in _iter_atom_files(paths):
        code = extract_abbrev(read_text(atom_path))
        if code:
            used.add(code)

    entries: List[JournalEntry] = []
    for date_dir in list_date_dirs(paths.journal_dir):
        month = date_dir[:7]
        atom_month_dir = paths.atoms_dir / month
        for md_file in list_md_files(paths.journal_dir / date_dir):
            if only_file and md_file != only_file:
                continue
            stem = md_file[:-3]
            atom_path = atom_month_dir / md_file
            common = dict(
                stem=stem,
                journal_path=paths.journal_dir / date_dir / md_file,
                atom_path=atom_path,
                atom_month_dir=atom_month_dir,
                date_dir=date_dir,
                month=month,
            )
            if not atom_path.exists():
                entries.append(JournalEntry(type=NEW, **common))
            elif is_placeholder(atom_path):
                abbrev = file_to_abbrev.get(stem) or extract_abbrev(read_text(atom_path))
                entries.append(JournalEntry(type=FILL, abbrev=abbrev, **common))

    return DiscoveryResult(entries=entries, used_abbrevs=used, file_to_abbrev=file_to_abbrev)


def list_group_files(paths: PrismPaths) -> List[str]:
    return [f for f in list_md_files(paths.groups_dir) if f.startswith("G")]


def collect_grouped_prefixes(paths: PrismPaths) -> Set[str]:
    prefixes: Set[str] = set()
    for name in list_group_files(paths):
        prefixes.update(_GROUPED_ROW_RE.findall(read_text(paths.groups_dir / name)))
    return prefixes


def collect_all_atom_paths(paths: PrismPaths) -> List[Path]:
    """Non-placeholder atom files, sorted."""
    return sorted(p for p in _iter_atom_files(paths) if not is_placeholder(p))


def collect_ungrouped_atom_paths(paths: PrismPaths) -> List[Path]:
    """Atoms whose abbreviation is not a row prefix in any group file.

    An atom without an abbreviation line counts as ungrouped.
    """
    grouped = collect_grouped_prefixes(paths)
    out = []
    for p in collect_all_atom_paths(paths):
        code = extract_abbrev(read_text(p))
        if code is None or code not in grouped:
            out.append(p)
    return out


def find_max_group_num(paths: PrismPaths) -> int:
    max_num = 0
    for name in list_group_files(paths):
        m = _GROUP_NUM_RE.match(name)
        if m:
            max_num = max(max_num, int(m.group(1)))
    return max_num


def collect_unreflected_groups(paths: PrismPaths) -> List[str]:
    """Group ids (``G03``) that exist as files but are never mentioned in the
    synthesis document."""
    synthesis = read_text_safe(paths.synthesis_path)
    missing = []
    for name in list_group_files(paths):
        m = _GROUP_NUM_RE.match(name)
        if not m:
            continue
        gid = f"G{m.group(1)}"
        if not re.search(rf"\b{gid}\b", synthesis):
            missing.append(gid)
    return missing
