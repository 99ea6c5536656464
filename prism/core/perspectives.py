"""Perspectives: SCQA framing and Key-Line trees built on the synthesis.

``new_perspective`` copies ``structure/_template`` into ``P{NN}-{slug}``;
``fill_perspective`` asks the model for the SCQA document or the Key-Line
table; ``expand_key_line`` writes one ``KLnn-*.md`` file. The model-backed
operations never raise for expected failures; they return a
``PerspectiveResult`` with an error code instead.
"""

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Union

from prism.core.formats import (
    ANSWER_HEADING,
    APEX_HEADING,
    KEY_LINES_HEADING,
    PERSPECTIVE_NAME_PLACEHOLDER,
)
from prism.core.parsers import is_valid_scqa
from prism.core.prompts import build_expand_kl_prompt, build_keyline_prompt, build_scqa_prompt
from prism.core.writers import update_perspective_index
from prism.lib.markdown import (
    atomic_write,
    extract_section,
    first_cell,
    is_separator_row,
    replace_section,
    split_cells,
)
from prism.lib.paths import make_paths
from prism.lib.text import read_text, read_text_safe, strip_code_fences

logger = logging.getLogger(__name__)

STAGE_SCQA = "scqa"
STAGE_KEYLINE = "keyline"
STAGES = (STAGE_SCQA, STAGE_KEYLINE)

PERSPECTIVE_NOT_FOUND = "PERSPECTIVE_NOT_FOUND"
SYNTHESIS_NOT_FOUND = "SYNTHESIS_NOT_FOUND"
TREE_NOT_FOUND = "TREE_NOT_FOUND"
KL_NOT_FOUND = "KL_NOT_FOUND"
LLM_ERROR = "LLM_ERROR"
UNKNOWN_STAGE = "UNKNOWN_STAGE"
INVALID_OUTPUT = "INVALID_OUTPUT"

NO_APEX = "(apex not found)"

KEY_LINE_TABLE_HEADER = (
    "| ID | Argument | Order | Groups | Detail |\n"
    "| -- | -------- | ----- | ------ | ------ |"
)
KEY_LINES_INTRO = (
    "First-level arguments under the apex. Each answers the reader's next "
    "question after reading the apex."
)
KEY_LINES_OUTRO = "Each Key Line has its own file in this directory."

_PERSPECTIVE_NUM_RE = re.compile(r"^P(\d+)")
_SLUG_RE = re.compile(r"^[\w][\w-]*$")
_KL_ID_RE = re.compile(r"^(?:KL)?(\d+)")
_KL_FILENAME_RE = re.compile(r"(KL\d+[-\w]*\.md)")
_GROUP_ID_RE = re.compile(r"^G?(\d+)$")

TEMPLATE_FILES = ["scqa.md", "validation.md", "tree/README.md"]


@dataclass
class PerspectiveResult:
    success: bool
    message: str
    error: Optional[str] = None
    content: Optional[str] = None


@dataclass
class NewPerspective:
    perspective_dir: Path
    dir_name: str
    name: str
    files: List[str] = field(default_factory=list)


@dataclass
class KeyLine:
    kl_id: str
    thesis: str
    groups: List[str]
    filename: str


def extract_answer(scqa_text: str) -> str:
    """Body of the ``## A - Answer`` section, or an empty string."""
    return extract_section(scqa_text, ANSWER_HEADING)


def next_perspective_number(structure_dir: Path) -> int:
    max_num = 0
    if structure_dir.is_dir():
        for entry in structure_dir.iterdir():
            m = _PERSPECTIVE_NUM_RE.match(entry.name)
            if m:
                max_num = max(max_num, int(m.group(1)))
    return max_num + 1


def new_perspective(base_dir: Union[str, Path], slug: str,
                    name: Optional[str] = None) -> NewPerspective:
    """Create ``structure/P{NN}-{slug}/`` from the template.

    Raises:
        ValueError: the slug is not a plain directory name.
        FileNotFoundError: ``pyramid/structure`` or its ``_template`` is missing.
        FileExistsError: the perspective directory already exists.
    """
    if not _SLUG_RE.match(slug or ""):
        raise ValueError(f"Invalid perspective slug: {slug!r}")
    paths = make_paths(base_dir)
    if not paths.structure_dir.is_dir():
        raise FileNotFoundError(
            f"pyramid/structure/ not found in {paths.base_dir}; run `knowledge-prism init` first"
        )

    dir_name = f"P{next_perspective_number(paths.structure_dir):02d}-{slug}"
    target = paths.structure_dir / dir_name
    if target.exists():
        raise FileExistsError(f"Perspective {dir_name} already exists")
    if not paths.template_dir.is_dir():
        raise FileNotFoundError(f"Template directory not found: {paths.template_dir}")

    shutil.copytree(paths.template_dir, target)
    perspective_name = name or slug

    for rel in TEMPLATE_FILES:
        p = target / rel
        if p.exists():
            text = read_text(p)
            if PERSPECTIVE_NAME_PLACEHOLDER in text:
                atomic_write(p, text.replace(PERSPECTIVE_NAME_PLACEHOLDER, perspective_name))

    if not update_perspective_index(paths, dir_name, perspective_name):
        logger.info("No %s; perspective row not recorded", paths.structure_index)
    logger.info("Created perspective %s", dir_name)
    return NewPerspective(perspective_dir=target, dir_name=dir_name,
                          name=perspective_name, files=list(TEMPLATE_FILES))


def _call(call_agent: Callable[[str], str], prompt: str) -> Union[str, PerspectiveResult]:
    try:
        return call_agent(prompt)
    except Exception as e:
        logger.debug("Model call failed", exc_info=True)
        return PerspectiveResult(False, f"Model call failed: {str(e) or type(e).__name__}", LLM_ERROR)


def key_lines_body(rows: List[str]) -> str:
    """Body of the ``## Key Lines`` section of ``tree/README.md``."""
    table = KEY_LINE_TABLE_HEADER + ("\n" + "\n".join(rows) if rows else "")
    return "\n".join([KEY_LINES_INTRO, "", table, "", KEY_LINES_OUTRO])


def _fill_scqa(perspective_path: Path, perspective_dir: str, synthesis: str, index: str,
               call_agent: Callable[[str], str], auto_write: bool) -> PerspectiveResult:
    generated = _call(call_agent, build_scqa_prompt(synthesis, index, perspective_dir))
    if isinstance(generated, PerspectiveResult):
        return generated

    content = strip_code_fences(generated.strip()).replace(
        PERSPECTIVE_NAME_PLACEHOLDER, perspective_dir)
    if not is_valid_scqa(content):
        logger.info("Rejected SCQA output (%d chars)", len(content))
        return PerspectiveResult(False, "Model output is missing the S/C/Q/A headings; "
                                        "scqa.md left unchanged", INVALID_OUTPUT, content=content)
    scqa_path = perspective_path / "scqa.md"
    if auto_write:
        atomic_write(scqa_path, content.rstrip("\n") + "\n")
        return PerspectiveResult(True, f"SCQA written to {scqa_path}", content=content)
    return PerspectiveResult(True, "SCQA generated (not written)", content=content)


def _fill_keyline(perspective_path: Path, synthesis: str, index: str,
                  call_agent: Callable[[str], str], auto_write: bool) -> PerspectiveResult:
    tree_path = perspective_path / "tree" / "README.md"
    if not tree_path.exists():
        return PerspectiveResult(False, f"tree/README.md not found: {tree_path}", TREE_NOT_FOUND)

    answer = extract_answer(read_text_safe(perspective_path / "scqa.md")) or NO_APEX
    generated = _call(call_agent, build_keyline_prompt(answer, synthesis, index))
    if isinstance(generated, PerspectiveResult):
        return generated

    rows = [
        line.strip() for line in strip_code_fences(generated.strip()).split("\n")
        if line.strip().startswith("|") and first_cell(line).startswith("KL")
    ]
    if not rows:
        return PerspectiveResult(False, "Model output holds no Key Line rows; "
                                        "tree/README.md left unchanged", INVALID_OUTPUT,
                                 content=generated)
    existing = read_text(tree_path)
    updated = replace_section(existing, APEX_HEADING, f"> {answer}")
    updated = replace_section(updated, KEY_LINES_HEADING, key_lines_body(rows))
    if auto_write:
        atomic_write(tree_path, updated)
        return PerspectiveResult(True, f"Key Line table written to {tree_path}", content=updated)
    return PerspectiveResult(True, "Key Lines generated (not written)", content=updated)


def fill_perspective(base_dir: Union[str, Path], perspective_dir: str, stage: str,
                     call_agent: Callable[[str], str], auto_write: bool = True) -> PerspectiveResult:
    """Generate the SCQA document or the Key-Line table of a perspective."""
    paths = make_paths(base_dir)
    perspective_path = paths.structure_dir / perspective_dir
    if not perspective_path.is_dir():
        return PerspectiveResult(False, f"Perspective directory not found: {perspective_path}",
                                 PERSPECTIVE_NOT_FOUND)
    if not paths.synthesis_path.exists():
        return PerspectiveResult(False, "synthesis.md not found; run `knowledge-prism process` first",
                                 SYNTHESIS_NOT_FOUND)

    synthesis = read_text(paths.synthesis_path)
    index = read_text_safe(paths.groups_index)

    if stage == STAGE_SCQA:
        return _fill_scqa(perspective_path, perspective_dir, synthesis, index, call_agent, auto_write)
    if stage == STAGE_KEYLINE:
        return _fill_keyline(perspective_path, synthesis, index, call_agent, auto_write)
    return PerspectiveResult(False, f"Unknown stage: {stage}", UNKNOWN_STAGE)


def parse_key_line_table(tree_text: str) -> List[KeyLine]:
    """Key Line rows (``| KLnn | thesis | order | groups | file |``)."""
    result = []
    for line in tree_text.split("\n"):
        if not line.strip().startswith("|") or is_separator_row(line):
            continue
        cells = split_cells(line)
        if len(cells) < 4:
            continue
        kl_id, thesis = cells[0], cells[1]
        if not kl_id.startswith("KL") or not thesis:
            continue
        groups_cell = cells[3]
        detail = cells[4] if len(cells) > 4 else ""
        m = _KL_FILENAME_RE.search(detail)
        if m:
            filename = m.group(1)
        elif detail.endswith(".md") and "/" not in detail:
            filename = detail
        else:
            filename = f"{kl_id}-expand.md"
        groups = [g.strip() for g in groups_cell.split(",") if g.strip()]
        result.append(KeyLine(kl_id=kl_id, thesis=thesis, groups=groups, filename=filename))
    return result


def normalize_kl_id(kl_id: str) -> str:
    """``KL02-foo`` -> ``KL02``; ``2`` -> ``KL02``."""
    m = _KL_ID_RE.match(kl_id.strip())
    if not m:
        return kl_id.strip()
    return f"KL{int(m.group(1)):02d}"


def find_group_file(groups_dir: Path, group: str) -> Optional[Path]:
    """``G03`` (or ``3``) -> ``G03.md`` or the first ``G03-*.md``."""
    m = _GROUP_ID_RE.match(group.strip())
    if not m or not groups_dir.is_dir():
        return None
    prefix = f"G{int(m.group(1)):02d}"
    exact = groups_dir / f"{prefix}.md"
    if exact.exists():
        return exact
    matches = sorted(f for f in groups_dir.iterdir()
                     if f.name.startswith(prefix + "-") and f.name.endswith(".md"))
    return matches[0] if matches else None


def expand_key_line(base_dir: Union[str, Path], perspective_dir: str, kl_id: str,
                    call_agent: Callable[[str], str], auto_write: bool = True) -> PerspectiveResult:
    """Write ``tree/KLnn-*.md`` for one Key Line of a perspective."""
    paths = make_paths(base_dir)
    perspective_path = paths.structure_dir / perspective_dir
    tree_path = perspective_path / "tree" / "README.md"
    if not tree_path.exists():
        return PerspectiveResult(False, f"tree/README.md not found: {tree_path}", TREE_NOT_FOUND)

    key_lines = parse_key_line_table(read_text(tree_path))
    wanted = normalize_kl_id(kl_id)
    kl = next((k for k in key_lines if normalize_kl_id(k.kl_id) == wanted), None)
    if kl is None:
        available = ", ".join(k.kl_id for k in key_lines) or "none"
        return PerspectiveResult(False, f"Key Line {kl_id} not found in tree/README.md. "
                                        f"Available: {available}", KL_NOT_FOUND)

    apex = extract_answer(read_text_safe(perspective_path / "scqa.md")) or NO_APEX
    sections = []
    for g in kl.groups:
        p = find_group_file(paths.groups_dir, g)
        if p is not None:
            sections.append(f"### {g}\n{read_text(p)}")
        else:
            logger.info("Group %s cited by %s has no file", g, kl.kl_id)

    generated = _call(call_agent, build_expand_kl_prompt(kl.thesis, apex, sections, perspective_dir))
    if isinstance(generated, PerspectiveResult):
        return generated

    content = strip_code_fences(generated.strip()).strip()
    if not content.startswith("#"):
        content = (f"# {kl.kl_id}: {kl.thesis}\n\n> Perspective: {perspective_dir}\n"
                   f"> Parent: apex\n\n{content}")

    kl_path = perspective_path / "tree" / kl.filename
    if auto_write:
        atomic_write(kl_path, content + "\n")
        return PerspectiveResult(True, f"Key Line file written to {kl_path}", content=content)
    return PerspectiveResult(True, "Key Line content generated (not written)", content=content)
