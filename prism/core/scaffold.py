"""``init``: lay down the directory skeleton of a new knowledge prism."""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from prism.config import CONFIG_FILENAME, ApiConfig, PrismConfig, save_config
from prism.core.formats import (
    ANSWER_HEADING,
    APEX_HEADING,
    CANDIDATES_HEADING,
    CHANGELOG_HEADING,
    KEY_LINES_HEADING,
    PERSPECTIVE_NAME_PLACEHOLDER,
    SYNTHESIS_HEADING,
)
from prism.lib.markdown import atomic_write
from prism.lib.text import PLACEHOLDER_MARKER, today_iso

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")

JOURNAL_README = """# Journal

Free-form notes, one Markdown file per topic, under a directory per day:

    journal/YYYY-MM-DD/<topic>.md

Files here are never modified by the pipeline.
"""

ATOMS_README = f"""# Atoms

One atom file per journal entry, stored under `YYYY-MM/` with the journal's
file name. Every atom file holds a title, a `> Source:` link, a
`> Abbrev:` line and the `## Atoms` table; atom IDs are `<Abbrev>-<nn>`.

A file containing `{PLACEHOLDER_MARKER}` is a placeholder that the next
`knowledge-prism process` run fills in.

## Abbreviations

| Abbrev | File                                  | Month   |
| ------ | ------------------------------------- | ------- |
"""

GROUPS_INDEX = f"""# Groups index

Each group clusters atoms under one thesis sentence. Group files are named
`GNN-slug.md`; numbers are never reused.

| Group | Thesis | Atoms | Months |
| ----- | ------ | ----- | ------ |

{CHANGELOG_HEADING}

| Date | Change | Reason |
| ---- | ------ | ------ |
| {{{{date}}}} | Initialised | knowledge-prism init |
"""

SYNTHESIS = f"""{SYNTHESIS_HEADING}

Converging top-level theses of {{{{name}}}}, drawn from all groups.
Tentative candidates are marked `S{{n}}*` until a second group supports them.

{CANDIDATES_HEADING}

| ID | Thesis | Supporting groups |
| -- | ------ | ----------------- |

### Tentative candidates

| ID | Thesis | Supporting groups |
| -- | ------ | ----------------- |

## Relationships

(none yet)

## Perspectives

See [structure/INDEX.md](../structure/INDEX.md).

{CHANGELOG_HEADING}

| Date | Change |
| ---- | ------ |
| {{{{date}}}} | Initialised |
"""

STRUCTURE_INDEX = f"""# Structure index

Perspectives built on top of the synthesis. Create one with
`knowledge-prism new-perspective <slug>`.

| ID | Perspective | Apex | Audience | Status |
| -- | ----------- | ---- | -------- | ------ |

{CHANGELOG_HEADING}

| Date | Change | Reason |
| ---- | ------ | ------ |
| {{{{date}}}} | Initialised | knowledge-prism init |
"""

TEMPLATE_SCQA = f"""# Introduction design (SCQA)

> Perspective: {PERSPECTIVE_NAME_PLACEHOLDER}

## Target reader

| Dimension  | Description |
| ---------- | ----------- |
| Role       |             |
| Background |             |
| Core need  |             |

## S - Situation

(to be written)

## C - Complication

(to be written)

## Q - Question

(to be written)

{ANSWER_HEADING}

(to be written)

{CHANGELOG_HEADING}

| Date | Change |
| ---- | ------ |
"""

TEMPLATE_VALIDATION = f"""# Validation

> Perspective: {PERSPECTIVE_NAME_PLACEHOLDER}

- [ ] Every Key Line answers the question the apex raises
- [ ] Key Lines are mutually exclusive
- [ ] Key Lines are collectively exhaustive
- [ ] Each level follows one ordering (time, structure or degree)
- [ ] Every argument is backed by groups and atoms
"""

TEMPLATE_TREE = f"""# Pyramid tree

> Perspective: {PERSPECTIVE_NAME_PLACEHOLDER}

{APEX_HEADING}

> (to be written: the Answer of scqa.md)

{KEY_LINES_HEADING}

First-level arguments under the apex. Each answers the reader's next question after reading the apex.

| ID | Argument | Order | Groups | Detail |
| -- | -------- | ----- | ------ | ------ |

Each Key Line has its own file in this directory.

## Validation

See [../validation.md](../validation.md).
"""

# relative path -> template text
SKELETON: Dict[str, str] = {
    "journal/README.md": JOURNAL_README,
    "pyramid/analysis/atoms/README.md": ATOMS_README,
    "pyramid/analysis/groups/INDEX.md": GROUPS_INDEX,
    "pyramid/analysis/synthesis.md": SYNTHESIS,
    "pyramid/structure/INDEX.md": STRUCTURE_INDEX,
    "pyramid/structure/_template/scqa.md": TEMPLATE_SCQA,
    "pyramid/structure/_template/validation.md": TEMPLATE_VALIDATION,
    "pyramid/structure/_template/tree/README.md": TEMPLATE_TREE,
    ".gitignore": ".env\n",
}


def render_template(content: str, variables: Dict[str, str]) -> str:
    """Replace ``{{key}}`` placeholders; unknown keys are left as-is."""
    return _PLACEHOLDER_RE.sub(lambda m: variables.get(m.group(1), m.group(0)), content)


@dataclass
class InitResult:
    base_dir: Path
    name: str
    files: List[str] = field(default_factory=list)


def init_prism(target_dir: Union[str, Path], name: Optional[str] = None) -> InitResult:
    """Create the skeleton and ``.knowledgeprism.json`` in ``target_dir``.

    Raises:
        FileExistsError: the directory already holds a knowledge prism.
    """
    base = Path(target_dir).resolve()
    config_path = base / CONFIG_FILENAME
    if config_path.exists():
        raise FileExistsError(f"{base} already contains {CONFIG_FILENAME}")

    prism_name = name or base.name
    variables = {"name": prism_name, "date": today_iso()}

    written = []
    for rel, template in SKELETON.items():
        target = base / rel
        if target.exists():
            logger.info("Keeping existing %s", rel)
            continue
        atomic_write(target, render_template(template, variables))
        written.append(rel)
    (base / "outputs").mkdir(parents=True, exist_ok=True)

    config = PrismConfig(name=prism_name, api=ApiConfig(api_key=""))
    save_config(config_path, config)
    written.append(CONFIG_FILENAME)
    logger.info("Initialised knowledge prism %r at %s", prism_name, base)
    return InitResult(base_dir=base, name=prism_name, files=written)
