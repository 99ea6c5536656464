"""Prompt builders for the three pipeline stages.

Each builder is a pure function of the current file contents plus the new
unit(s) and returns the user turn. The system turn is the fixed
``DEFAULT_SYSTEM_PROMPT`` of ``prism.lib.llm_clients``.
"""

import re
from pathlib import Path
from typing import Iterable, List

from prism.core.discovery import JournalEntry
from prism.core.formats import (
    ABBREV_PREFIX,
    ANSWER_HEADING,
    ATOM_KINDS,
    ATOMS_HEADING,
    BLOCK_END,
    CANDIDATES_HEADING,
    CHANGELOG_HEADING,
    CHANGELOG_OPEN,
    COMPLICATION_HEADING,
    INDEX_ROWS_OPEN,
    PERSPECTIVE_NAME_PLACEHOLDER,
    QUESTION_HEADING,
    SITUATION_HEADING,
    SOURCE_PREFIX,
    SYNTHESIS_HEADING,
)
from prism.lib.text import extract_abbrev, extract_title, read_text

_ATOM_ROW_RE = re.compile(r"^\|\s*([A-Z]{2}-\d{2})\s*\|[^|]*\|\s*([^|]+?)\s*\|")

ATOM_EXAMPLE = f"""# Designing a personal knowledge base

{SOURCE_PREFIX} [../../../../journal/2026-02-22/knowledge-base-design.md](../../../../journal/2026-02-22/knowledge-base-design.md)
{ABBREV_PREFIX} KB

{ATOMS_HEADING}

| ID    | Kind     | Content                                                                          | Locator                |
| ----- | -------- | -------------------------------------------------------------------------------- | ---------------------- |
| KB-01 | fact     | Twenty date-ordered learning notes exist; good for process, poor for reuse        | Background             |
| KB-02 | judgment | Date-ordered notes have no reading order, scattered topics and no central thesis  | Problem analysis       |
| KB-03 | step     | Top-down: start from the conclusion, check it with SCQA, expand level by level    | Pyramid > Top-down     |"""


def journal_source_path(entry: JournalEntry) -> str:
    """Source link from the atom file back to its journal."""
    return f"../../../../journal/{entry.date_dir}/{entry.filename}"


def build_atom_prompt(entry: JournalEntry, journal_text: str, used_abbrevs: Iterable[str]) -> str:
    """Prompt that turns one journal into a complete atom file."""
    title = extract_title(journal_text)
    source = journal_source_path(entry)

    if entry.abbrev:
        abbrev_section = f"""## Abbreviation

This journal's abbreviation is **{entry.abbrev}**. Number the atoms {entry.abbrev}-01, {entry.abbrev}-02, ...
"""
    else:
        taken = ", ".join(sorted(used_abbrevs)) or "(none)"
        abbrev_section = f"""## Abbreviation

Choose a 2-letter UPPERCASE abbreviation for this journal; it prefixes every atom ID.
Already taken (do not reuse): {taken}
Pick a meaningful code that is not taken and put it on the "{ABBREV_PREFIX} XX" line.
"""

    kinds = ", ".join(ATOM_KINDS)
    return f"""You are a knowledge-base assistant. Extract the information units (atoms) from the journal below.

## Output

Output the complete atom Markdown file directly (no code fence). Follow this layout exactly:

1. First line: # <journal title>
2. Blank line, then: {SOURCE_PREFIX} [relative path](relative path)
3. Next line: {ABBREV_PREFIX} XX
4. Blank line, then: {ATOMS_HEADING}
5. Then the atom table with columns ID, Kind, Content, Locator

## Extraction rules

- Each atom is the smallest self-contained unit of information
- Kind is one of: {kinds}
  - fact: concepts, definitions, descriptions of how something is built
  - step: concrete procedures, commands, configuration
  - lesson: pitfalls, good practice, non-obvious findings
  - judgment: assessments, feasibility conclusions, trade-off decisions
- Content is one concise sentence
- Locator names the journal section the atom came from
- IDs count up from 01

{abbrev_section}
## Example (first rows only)

{ATOM_EXAMPLE}

## This journal

- Title: {title}
- Source path: {source}
- Date directory: {entry.date_dir}

## Journal text

{journal_text}
"""


def summarize_atom(content: str, stem: str) -> str:
    """``**XX** (stem) - title`` followed by one line per atom row."""
    title = extract_title(content)
    abbrev = extract_abbrev(content) or "??"
    rows = []
    for line in content.split("\n"):
        m = _ATOM_ROW_RE.match(line)
        if m:
            rows.append(f"- {m.group(1)}: {m.group(2).strip()}")
    return "\n".join([f"**{abbrev}** ({stem}) - {title}"] + rows)


def condensed_atom_summary(atom_path: Path) -> str:
    atom_path = Path(atom_path)
    return summarize_atom(read_text(atom_path), atom_path.stem)


def condensed_summaries(atom_paths: Iterable[Path]) -> str:
    return "\n\n".join(condensed_atom_summary(p) for p in atom_paths)


def build_groups_prompt(index_text: str, atom_summaries: str, max_group_num: int,
                        auto_write: bool, today: str) -> str:
    """Group-assignment prompt; advisory free text or the delimiter contract."""
    if not auto_write:
        return f"""You are a knowledge-base assistant. Below are newly extracted atoms and the current group structure.

## Task

Analyse the new atoms and suggest a grouping:
1. Which new atoms belong in which existing group? (atom ID -> group ID)
2. Is a new group needed? If so give its number (continuing after G{max_group_num:02d}), its thesis sentence and its atoms.
3. Should any existing group be split or merged?

Answer with a clear table or list.

## Current groups

{index_text}

## New atoms

{atom_summaries}
"""

    first_new = max_group_num + 1
    return f"""You are a knowledge-base assistant. Below are atoms waiting to be grouped and the current group index.

## Task

Analyse the atoms and update the groups. Use the delimiter format below exactly; a script parses it and writes the files.

### Operations

1. **New group**: when atoms form a theme no existing group covers, create a group. New numbers start at G{first_new:02d}.
2. **Update a group**: when atoms belong in an existing group, output that group's complete updated file (old atoms + new atoms).
3. **Ungroupable atoms**: when atoms cannot be grouped yet, say so in the CHANGELOG block.

### Output format (no other text)

One block per new or updated group:

```
=== GROUP: G{first_new:02d}-topic-slug.md ===
(complete group file, following the template below)
{BLOCK_END}
```

After all group blocks, the index block:

```
{INDEX_ROWS_OPEN}
(only new or changed rows, in the INDEX.md table format)
| G{first_new:02d} | thesis sentence | atom count | source months |
{BLOCK_END}
```

Finally the changelog block:

```
{CHANGELOG_OPEN}
| {today} | what changed | why |
{BLOCK_END}
```

### Group file template

```markdown
# GXX: <an opinionated thesis sentence>

> One judgment sentence summarising what these atoms show together.

{ATOMS_HEADING}

| ID    | Source           | Summary |
| ----- | ---------------- | ------- |
| XX-01 | source-file-stem | ...     |

## Ordering

How the atoms are ordered (time order / structure order / degree order).
```

### Rules

- Every group thesis is an opinionated judgment sentence
- The Source column holds the journal file name without .md
- When updating a group keep all of its existing atoms and append the new ones at the end of the table
- Atom counts must be exact
- Source months cover the months of every atom in the group

## Current group INDEX

{index_text}

## Atoms to group

{atom_summaries}
"""


def build_synthesis_prompt(synthesis_text: str, index_text: str, atom_summaries: str,
                           auto_write: bool, today: str) -> str:
    """Synthesis-update prompt; advisory review or a full replacement document."""
    if not auto_write:
        return f"""You are a knowledge-base assistant. Below are the current synthesis (top-level thesis candidates) and the atoms.

## Task

Assess:
1. Are the current top-level candidates still accurate?
2. Do the atoms support existing candidates, or suggest adding or changing one?
3. Does the description of how candidates relate need updating?

Give concrete suggestions. If nothing needs to change, say so briefly.

## Current synthesis

{synthesis_text}

## Current group INDEX (including the latest groups)

{index_text}

## Atoms

{atom_summaries}
"""

    return f"""You are a knowledge-base assistant. Update synthesis.md from the atoms and the current groups.

## Task

1. Check whether the existing top-level candidates are still accurate
2. Decide whether the atoms support existing candidates or call for adding, changing or promoting one
3. Update the description of how candidates relate
4. Append a row for today ({today}) to the changelog table

## Output

Output the complete updated synthesis.md directly (no code fence).

Keep the existing structure:
- {SYNTHESIS_HEADING} heading and its introduction
- {CANDIDATES_HEADING} table
- ### Tentative candidates table (if present)
- ## Relationships
- Perspective index links
- {CHANGELOG_HEADING} table

### Rules

- Only add, promote or change a candidate with clear evidence
- Keep S1, S2, ... numbering continuous
- Mark tentative candidates S{{n}}* (for example S7*)
- Promote a tentative candidate once a second group supports it
- If nothing needs to change, output the document unchanged but still append a changelog row saying "no change"
- Changelog dates use YYYY-MM-DD

## Current synthesis.md

{synthesis_text}

## Current group INDEX (including the latest groups)

{index_text}

## Atoms

{atom_summaries}
"""


# Perspective prompts

SCQA_INSTRUCTIONS = f"""You are an expert in structured thinking. From the synthesis (top-level theses) and the groups (clustered atoms), write the complete SCQA for one perspective.
Output the complete scqa.md using the structure below. Fill every section. No extra commentary.

# Introduction design (SCQA)

> Perspective: {PERSPECTIVE_NAME_PLACEHOLDER}

## Target reader

| Dimension        | Description |
| ---------------- | ----------- |
| Role             | ...         |
| Background       | ...         |
| Core need        | ...         |

{SITUATION_HEADING}

(2-4 sentences of background the reader already accepts)

{COMPLICATION_HEADING}

(what changed, conflicts or hurts in that situation)

{QUESTION_HEADING}

(the one question the complication raises for the reader)

{ANSWER_HEADING}

(one sentence: the core claim, the apex of the pyramid, consistent with the synthesis)

## Checks

- [ ] Is S something the reader already agrees with?
- [ ] Does C follow naturally from S?
- [ ] Is Q the inevitable question after C?
- [ ] Does A answer Q directly?
- [ ] Does A match a synthesis candidate, or deviate on purpose?

---

{CHANGELOG_HEADING}

| Date | Change |
| ---- | ------ |"""

KEYLINE_INSTRUCTIONS = """You are an expert in the pyramid principle. From the synthesis, the group INDEX and the apex (the Answer of the SCQA), write the Key Line table rows.
Output Markdown table rows only (no header row). Each row:
| KLnn | <argument sentence> | time/structure/degree | Gxx, Gyy | KLnn-slug.md |
Use 2-5 Key Lines. Pick the synthesis theses that support the apex and cite their groups. The slug is hyphen-separated English."""

EXPAND_KL_INSTRUCTIONS = """You are an expert in the pyramid principle. From a Key Line argument, the apex above it and the groups it cites, write the Key Line file.

Output complete Markdown with this structure:

# KLnn: <the argument sentence, as given>

> Perspective: <perspective name>
> Parent: apex

## Supporting arguments

### n.1: <thesis sentence>
- Order: time/structure/degree
- Atoms: XX-01, XX-02
- Groups: Gxx

<1-2 sentences of explanation>

### n.2: <thesis sentence>
...

## How the arguments relate

<1-3 sentences on the order of the sub-arguments: structure/time/degree>"""


def build_scqa_prompt(synthesis_text: str, index_text: str, perspective: str) -> str:
    return f"""{SCQA_INSTRUCTIONS}

---

## Synthesis
{synthesis_text}

## Groups INDEX
{index_text}

Write the complete scqa.md. Replace "{PERSPECTIVE_NAME_PLACEHOLDER}" with: {perspective}"""


def build_keyline_prompt(answer: str, synthesis_text: str, index_text: str) -> str:
    return f"""{KEYLINE_INSTRUCTIONS}

---

## Apex (the SCQA Answer)
{answer}

## Synthesis
{synthesis_text}

## Groups INDEX
{index_text}

Write the Key Line table rows. Table rows only, one per line."""


def build_expand_kl_prompt(thesis: str, apex: str, group_sections: List[str],
                           perspective: str) -> str:
    groups = "\n\n".join(group_sections) or "(no group files found)"
    return f"""{EXPAND_KL_INSTRUCTIONS}

---

## Key Line argument
{thesis}

## Apex (parent argument)
{apex}

## Cited groups
{groups}

Write the KL file. Perspective: {perspective}"""
