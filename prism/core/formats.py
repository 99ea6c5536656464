"""Markers shared by the prompt builders, validators, writers and templates."""

# Atom files
SOURCE_PREFIX = "> Source:"
ABBREV_PREFIX = "> Abbrev:"
ATOMS_HEADING = "## Atoms"
ID_COLUMN = "| ID"
ATOM_KINDS = ("fact", "step", "lesson", "judgment")

# Index files (groups INDEX.md, structure INDEX.md, synthesis.md)
CHANGELOG_HEADING = "## Changelog"

# Synthesis document
SYNTHESIS_HEADING = "# Synthesis"
CANDIDATES_HEADING = "## Top-level candidates"

# Delimiter-framed group output
INDEX_ROWS_OPEN = "=== INDEX_ROWS ==="
CHANGELOG_OPEN = "=== CHANGELOG ==="
BLOCK_END = "=== END ==="

# Perspectives
SITUATION_HEADING = "## S - Situation"
COMPLICATION_HEADING = "## C - Complication"
QUESTION_HEADING = "## Q - Question"
ANSWER_HEADING = "## A - Answer"
SCQA_HEADINGS = (SITUATION_HEADING, COMPLICATION_HEADING, QUESTION_HEADING, ANSWER_HEADING)
APEX_HEADING = "## Apex"
KEY_LINES_HEADING = "## Key Lines"
PERSPECTIVE_NAME_PLACEHOLDER = "(perspective name)"
