"""Naming-convention helpers shared by discovery, status and the writers.

Everything here is stateless. Missing directories read as empty so callers
never have to special-case a freshly initialised knowledge base.
"""

import re
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

DATE_DIR_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MONTH_DIR_RE = re.compile(r"^\d{4}-\d{2}$")
INDEX_FILES = ("README.md", "INDEX.md")

PLACEHOLDER_MARKER = "(pending extraction)"
UNTITLED = "(untitled)"

_TITLE_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_ABBREV_LINE_RE = re.compile(r">\s*Abbrev:\s*([A-Z]{2})\b")
_ABBREV_ROW_RE = re.compile(r"^\|\s*([A-Z]{2})\s*\|\s*(\S+)\s*\|")
_FENCED_BLOCK_RE = re.compile(r"^```(?:markdown|md)?\s*\n(.*?)\n```\s*$", re.MULTILINE | re.DOTALL)
_FENCED_WHOLE_RE = re.compile(r"```(?:markdown|md)?\s*\n(.*)\n```\s*\Z", re.DOTALL)


def read_text(path: Path) -> str:
    return Path(path).read_text(encoding="utf-8")


def read_text_safe(path: Path) -> str:
    """Read a file, returning an empty string when it is missing."""
    try:
        return read_text(path)
    except FileNotFoundError:
        return ""


def _list_subdirs(directory: Path, pattern: re.Pattern) -> List[str]:
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(
        d.name for d in directory.iterdir()
        if d.is_dir() and pattern.match(d.name)
    )


def list_date_dirs(directory: Path) -> List[str]:
    """YYYY-MM-DD sub-directories, ascending."""
    return _list_subdirs(directory, DATE_DIR_RE)


def list_month_dirs(directory: Path) -> List[str]:
    """YYYY-MM sub-directories, ascending."""
    return _list_subdirs(directory, MONTH_DIR_RE)


def list_md_files(directory: Path) -> List[str]:
    """Markdown file names in a directory, excluding README.md and INDEX.md."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(
        f.name for f in directory.iterdir()
        if f.is_file() and f.name.endswith(".md") and f.name not in INDEX_FILES
    )


def extract_title(content: str) -> str:
    m = _TITLE_RE.search(content)
    return m.group(1).strip() if m else UNTITLED


def is_placeholder(atom_path: Path) -> bool:
    atom_path = Path(atom_path)
    if not atom_path.exists():
        return False
    return PLACEHOLDER_MARKER in read_text(atom_path)


def extract_abbrev(content: str) -> Optional[str]:
    """Return the ``> Abbrev: XX`` code of an atom body, or None."""
    m = _ABBREV_LINE_RE.search(content)
    return m.group(1) if m else None


def parse_abbrev_table(readme_content: str) -> Tuple[Dict[str, str], Set[str]]:
    """Parse the abbreviation registry into (stem -> code, used codes)."""
    file_to_abbrev: Dict[str, str] = {}
    used: Set[str] = set()
    for line in readme_content.split("\n"):
        m = _ABBREV_ROW_RE.match(line)
        if m:
            file_to_abbrev[m.group(2)] = m.group(1)
            used.add(m.group(1))
    return file_to_abbrev, used


def strip_code_fences(text: str) -> str:
    """Unwrap model output that arrived inside a ```markdown fence."""
    m = _FENCED_BLOCK_RE.search(text)
    if m:
        return m.group(1)
    m = _FENCED_WHOLE_RE.match(text)
    if m:
        return m.group(1)
    return text


def today_iso() -> str:
    return date.today().isoformat()
