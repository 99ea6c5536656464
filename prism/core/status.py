"""Read-only status summary of a knowledge prism."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Union

from prism.core.discovery import collect_ungrouped_atom_paths, list_group_files
from prism.lib.paths import make_paths
from prism.lib.text import is_placeholder, list_date_dirs, list_md_files, list_month_dirs

_PERSPECTIVE_DIR_RE = re.compile(r"^P\d+")

NOT_AVAILABLE = "-"


@dataclass
class UnprocessedJournal:
    date_dir: str
    file: str


@dataclass
class PrismStatus:
    total_journals: int = 0
    total_dates: int = 0
    total_atoms: int = 0
    total_groups: int = 0
    total_perspectives: int = 0
    ungrouped_count: int = 0
    synthesis_modified: str = NOT_AVAILABLE
    unprocessed: List[UnprocessedJournal] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        """camelCase shape used by ``status --json``."""
        return {
            "totalJournals": self.total_journals,
            "totalDates": self.total_dates,
            "totalAtoms": self.total_atoms,
            "totalGroups": self.total_groups,
            "totalPerspectives": self.total_perspectives,
            "ungroupedCount": self.ungrouped_count,
            "synthesisModified": self.synthesis_modified,
            "unprocessed": [
                {"dateDir": u.date_dir, "file": u.file} for u in self.unprocessed
            ],
        }


def get_status(base_dir: Union[str, Path]) -> PrismStatus:
    """Count journals, atoms, groups and perspectives. Writes nothing.

    ``total_atoms`` includes placeholder files. Unprocessed journals are only
    listed once ``atoms/README.md`` exists.
    """
    paths = make_paths(base_dir)
    status = PrismStatus()

    date_dirs = list_date_dirs(paths.journal_dir)
    status.total_dates = len(date_dirs)
    for d in date_dirs:
        status.total_journals += len(list_md_files(paths.journal_dir / d))

    if paths.atoms_readme.exists():
        for date_dir in date_dirs:
            month = date_dir[:7]
            for md_file in list_md_files(paths.journal_dir / date_dir):
                atom_path = paths.atoms_dir / month / md_file
                if not atom_path.exists() or is_placeholder(atom_path):
                    status.unprocessed.append(UnprocessedJournal(date_dir=date_dir, file=md_file))

    for month in list_month_dirs(paths.atoms_dir):
        status.total_atoms += len(list_md_files(paths.atoms_dir / month))

    status.total_groups = len(list_group_files(paths))
    status.ungrouped_count = len(collect_ungrouped_atom_paths(paths))

    if paths.structure_dir.is_dir():
        status.total_perspectives = sum(
            1 for d in paths.structure_dir.iterdir()
            if d.is_dir() and _PERSPECTIVE_DIR_RE.match(d.name)
        )

    if paths.synthesis_path.exists():
        mtime = paths.synthesis_path.stat().st_mtime
        status.synthesis_modified = datetime.fromtimestamp(mtime).strftime("%Y-%m-%d")

    return status


def format_status(name: str, base_dir: Path, status: PrismStatus) -> List[str]:
    """Lines of the human-readable status report."""
    lines = [
        f"Knowledge prism: {name}",
        f"Base dir: {base_dir}",
        "",
        f"  Journals              {status.total_journals:>5}",
        f"  Journal date dirs     {status.total_dates:>5}",
        f"  Atom files            {status.total_atoms:>5}",
        f"  Groups                {status.total_groups:>5}",
        f"  Perspectives          {status.total_perspectives:>5}",
        "",
        f"  Pending journals      {len(status.unprocessed):>5}",
        f"  Ungrouped atom files  {status.ungrouped_count:>5}",
        f"  Synthesis modified    {status.synthesis_modified:>10}",
    ]
    if status.unprocessed:
        lines += ["", "  Pending journals:", "", "  Date       | File", "  ---------- | ----"]
        lines += [f"  {u.date_dir} | {u.file}" for u in status.unprocessed]
        lines += ["", "  Run `knowledge-prism process` to process them."]
    else:
        lines += ["", "  All journals are processed."]
    return lines
