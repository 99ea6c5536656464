"""Incremental pipeline: journals -> atoms -> groups -> synthesis.

    DISCOVER_JOURNALS -> EXTRACT_ATOMS -> COLLECT_FOR_GROUPING
        -> ASSIGN_GROUPS -> COLLECT_FOR_SYNTHESIS -> UPDATE_SYNTHESIS -> DONE

``max_stage`` cuts the run after atoms (1), groups (2) or synthesis (3).
Units are processed one at a time. A failed model call or a malformed
response skips that unit with a warning; the run carries on. Everything the
next run needs is on disk (placeholders, registry, group rows), so a crashed
run is resumed by running again.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Union

from prism.config import PrismConfig
from prism.core.discovery import (
    JournalEntry,
    collect_all_atom_paths,
    collect_unreflected_groups,
    collect_ungrouped_atom_paths,
    discover_journals,
    find_max_group_num,
)
from prism.core.formats import ABBREV_PREFIX, SOURCE_PREFIX
from prism.core.parsers import (
    DelimitedGroupsParser,
    GroupsOutputParser,
    is_valid_synthesis,
    validate_atom_output,
)
from prism.core.prompts import (
    build_atom_prompt,
    build_groups_prompt,
    build_synthesis_prompt,
    condensed_summaries,
)
from prism.core.writers import AbbrevRegistry, write_atom, write_groups_output, write_synthesis
from prism.lib.logger import LogFn, RunLogger
from prism.lib.paths import PrismPaths, make_paths
from prism.lib.text import extract_abbrev, read_text, read_text_safe, strip_code_fences, today_iso

logger = logging.getLogger(__name__)

ERROR_SNIPPET_CHARS = 200
RAW_ATOM_PREVIEW_CHARS = 1000
RAW_OUTPUT_PREVIEW_CHARS = 2000


@dataclass
class PipelineSummary:
    atoms_processed: int = 0
    groups_written: int = 0
    groups_updated: int = 0
    synthesis_updated: bool = False
    warnings: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "atomsProcessed": self.atoms_processed,
            "groupsWritten": self.groups_written,
            "groupsUpdated": self.groups_updated,
            "synthesisUpdated": self.synthesis_updated,
            "warnings": len(self.warnings),
        }


@dataclass
class RunContext:
    """Mutable state of one pipeline run, threaded through the stages."""
    paths: PrismPaths
    config: PrismConfig
    call_agent: Callable[[str], str]
    out: RunLogger
    registry: AbbrevRegistry
    used_abbrevs: Set[str]
    groups_parser: GroupsOutputParser
    dry_run: bool = False
    auto_write: bool = False
    verbose: bool = False
    today: str = ""

    def rel(self, path: Path) -> str:
        try:
            return str(Path(path).relative_to(self.paths.base_dir))
        except ValueError:
            return str(path)

    def call(self, prompt: str, unit: str) -> Optional[str]:
        """Call the model; a failure becomes a warning and None."""
        try:
            return self.call_agent(prompt)
        except Exception as e:
            logger.debug("Model call failed for %s", unit, exc_info=True)
            self.out.warn(f"{unit}: model call failed: {str(e)[:ERROR_SNIPPET_CHARS]}")
            return None


# ---------------------------------------------------------------------------
# Stage 1: atoms
# ---------------------------------------------------------------------------

def _report_discovery(ctx: RunContext, entries: List[JournalEntry]) -> None:
    if not entries:
        ctx.out.log("All journals are processed; nothing pending.")
        return
    ctx.out.log(f"Found {len(entries)} pending entries:")
    ctx.out.log("")
    ctx.out.log("  Type | Date       | File")
    ctx.out.log("  ---- | ---------- | ----")
    for e in entries:
        ctx.out.log(f"  {e.label:<4} | {e.date_dir} | {e.filename}")
    ctx.out.log("")


def with_abbrev_line(output: str, abbrev: str) -> str:
    """Insert ``> Abbrev: XX`` after the ``> Source:`` line."""
    lines = output.split("\n")
    at = next((i + 1 for i, line in enumerate(lines) if line.strip().startswith(SOURCE_PREFIX)),
              len(lines))
    lines.insert(at, f"{ABBREV_PREFIX} {abbrev}")
    return "\n".join(lines)


def process_atom(ctx: RunContext, entry: JournalEntry) -> Optional[Path]:
    """Extract, validate and write the atom file of one journal entry."""
    journal_text = read_text(entry.journal_path)
    prompt = build_atom_prompt(entry, journal_text, ctx.used_abbrevs)

    if ctx.verbose:
        ctx.out.log(f"--- Prompt preview ({len(prompt)} chars) ---")
        ctx.out.log(prompt[:500])
        ctx.out.log("...")

    if ctx.dry_run:
        ctx.out.log(f"[dry-run] would call the model for {entry.stem}")
        ctx.out.log(f"[dry-run] prompt length: {len(prompt)} chars")
        return None

    raw = ctx.call(prompt, entry.filename)
    if raw is None:
        return None

    output = strip_code_fences(raw.strip())
    if ctx.verbose:
        ctx.out.log(f"--- Raw response ({len(raw)} chars) ---")
        ctx.out.log(raw[:RAW_OUTPUT_PREVIEW_CHARS])

    issues = validate_atom_output(output)
    if issues:
        ctx.out.warn(f"{entry.filename}: output failed validation:\n    " + "\n    ".join(issues))
        ctx.out.log("Skipping write. Raw output:")
        ctx.out.log(output[:RAW_ATOM_PREVIEW_CHARS])
        return None

    produced = extract_abbrev(output)
    if entry.abbrev:
        if produced and produced != entry.abbrev:
            ctx.out.warn(
                f"{entry.filename}: output uses abbreviation {produced}, expected {entry.abbrev}; skipped"
            )
            return None
        abbrev = entry.abbrev
        if not produced:
            output = with_abbrev_line(output, abbrev)
            logger.debug("Added missing abbreviation line %s to %s", abbrev, entry.filename)
    else:
        if not produced:
            ctx.out.warn(f"{entry.filename}: no abbreviation in model output; skipped")
            return None
        if produced in ctx.used_abbrevs:
            ctx.out.warn(f"{entry.filename}: abbreviation {produced} is already taken; skipped")
            return None
        abbrev = produced

    path = write_atom(entry, output, abbrev, ctx.registry, ctx.used_abbrevs, ctx.out.warn)
    ctx.out.log(f"+ wrote {ctx.rel(path)}")
    return path


def extract_atoms(ctx: RunContext, entries: List[JournalEntry]) -> List[Path]:
    ctx.out.heading("Stage 1: extract atoms")
    written: List[Path] = []
    try:
        for i, entry in enumerate(entries, start=1):
            ctx.out.log("")
            ctx.out.log(f"[{i}/{len(entries)}] {entry.label}: {entry.filename}")
            path = process_atom(ctx, entry)
            if path is not None:
                written.append(path)
    finally:
        if ctx.registry.flush():
            ctx.out.log(f"+ updated {ctx.rel(ctx.registry.path)}")
    ctx.out.log("")
    ctx.out.log(f"Stage 1 done: {len(written)}/{len(entries)} atom files processed")
    return written


# ---------------------------------------------------------------------------
# Stage 2: groups
# ---------------------------------------------------------------------------

def _batches(items: List[Path], size: int) -> List[List[Path]]:
    size = max(1, int(size))
    return [items[i:i + size] for i in range(0, len(items), size)]


def assign_groups(ctx: RunContext, atom_paths: List[Path], summary: PipelineSummary) -> None:
    if not atom_paths:
        ctx.out.log("No atoms to group; skipping stage 2")
        return

    ctx.out.heading("Stage 2: assign groups" if ctx.auto_write else "Stage 2: grouping suggestions")
    batch_size = ctx.config.process.batch_size
    batches = _batches(atom_paths, batch_size)
    ctx.out.log(f"{len(atom_paths)} atom files in {len(batches)} batches of up to {batch_size}")

    for bi, batch in enumerate(batches, start=1):
        ctx.out.log("")
        ctx.out.log(f"--- Batch {bi}/{len(batches)} ({', '.join(p.stem for p in batch)}) ---")
        prompt = build_groups_prompt(
            read_text_safe(ctx.paths.groups_index),
            condensed_summaries(batch),
            find_max_group_num(ctx.paths),
            ctx.auto_write,
            ctx.today,
        )
        if ctx.dry_run:
            ctx.out.log(f"[dry-run] prompt length: {len(prompt)} chars")
            continue
        if ctx.verbose:
            ctx.out.log(f"Prompt length: {len(prompt)} chars")

        output = ctx.call(prompt, f"batch {bi}")
        if output is None:
            continue

        if not ctx.auto_write:
            ctx.out.log("")
            ctx.out.log("--- Grouping suggestions ---")
            ctx.out.log(output)
            continue

        cleaned = strip_code_fences(output.strip())
        payload = ctx.groups_parser.parse(cleaned)
        if payload.is_empty():
            ctx.out.warn(f"batch {bi}: model output held no group blocks; raw output follows")
            ctx.out.log(cleaned[:RAW_OUTPUT_PREVIEW_CHARS])
            continue
        stats = write_groups_output(ctx.paths, payload, ctx.out.log, ctx.out.warn)
        summary.groups_written += stats.written
        summary.groups_updated += stats.updated

    ctx.out.log("")
    if ctx.auto_write:
        ctx.out.log(f"Stage 2 done: {summary.groups_written} new groups, "
                    f"{summary.groups_updated} updated")
    elif not ctx.dry_run:
        ctx.out.log("--- End of suggestions (review them and edit the group files by hand) ---")


# ---------------------------------------------------------------------------
# Stage 3: synthesis
# ---------------------------------------------------------------------------

def synthesis_is_current(ctx: RunContext, summary: PipelineSummary, pending_entries: int) -> bool:
    """True when nothing since the last synthesis update needs reflecting."""
    if summary.atoms_processed or summary.groups_written or summary.groups_updated:
        return False
    if ctx.dry_run and pending_entries:
        return False
    if collect_ungrouped_atom_paths(ctx.paths):
        return False
    return not collect_unreflected_groups(ctx.paths)


def update_synthesis(ctx: RunContext, summary: PipelineSummary,
                     pending_entries: int = 0, force: bool = False) -> None:
    atom_paths = collect_all_atom_paths(ctx.paths)
    if not atom_paths:
        ctx.out.log("No atom files; skipping stage 3")
        return
    if not force and synthesis_is_current(ctx, summary, pending_entries):
        ctx.out.log("Synthesis already reflects every group; skipping stage 3")
        return

    ctx.out.heading("Stage 3: update synthesis" if ctx.auto_write else "Stage 3: synthesis review")
    prompt = build_synthesis_prompt(
        read_text_safe(ctx.paths.synthesis_path),
        read_text_safe(ctx.paths.groups_index),
        condensed_summaries(atom_paths),
        ctx.auto_write,
        ctx.today,
    )
    if ctx.dry_run:
        mode = "update" if ctx.auto_write else "review"
        ctx.out.log(f"[dry-run] would call the model to {mode} the synthesis")
        ctx.out.log(f"[dry-run] prompt length: {len(prompt)} chars")
        return

    output = ctx.call(prompt, "synthesis")
    if output is None:
        return

    if not ctx.auto_write:
        ctx.out.log("")
        ctx.out.log("--- Synthesis review ---")
        ctx.out.log(output)
        ctx.out.log("--- End of review (edit synthesis.md by hand) ---")
        return

    cleaned = strip_code_fences(output.strip())
    if not is_valid_synthesis(cleaned):
        ctx.out.warn("synthesis: model output is not a valid synthesis.md; raw output follows")
        ctx.out.log(cleaned[:RAW_OUTPUT_PREVIEW_CHARS])
        return
    path = write_synthesis(ctx.paths, cleaned)
    ctx.out.log(f"+ updated {ctx.rel(path)}")
    summary.synthesis_updated = True


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run_pipeline(base_dir: Union[str, Path],
                 config: PrismConfig,
                 call_agent: Callable[[str], str],
                 dry_run: bool = False,
                 auto_write: bool = False,
                 max_stage: int = 3,
                 only_file: Optional[str] = None,
                 verbose: bool = False,
                 log: Optional[LogFn] = None,
                 warn: Optional[LogFn] = None,
                 heading: Optional[LogFn] = None,
                 force_synthesis: bool = False,
                 groups_parser: Optional[GroupsOutputParser] = None) -> PipelineSummary:
    """Run the incremental pipeline against one knowledge prism.

    Args:
        base_dir: Knowledge prism root (the directory of the marker file).
        config: Loaded config; ``config.process.batch_size`` sets group batching.
        call_agent: ``prompt -> completion`` callable.
        dry_run: Build every prompt and report its size; never call or write.
        auto_write: Let stages 2 and 3 write files instead of printing advice.
        max_stage: 1 = atoms, 2 = + groups, 3 = + synthesis.
        only_file: Restrict stage 1 to this journal file name.
        force_synthesis: Run stage 3 even when the synthesis looks current.
        groups_parser: Alternative parser for stage 2 output.

    Returns:
        PipelineSummary; ``warnings`` lists every skipped unit.
    """
    if max_stage not in (1, 2, 3):
        raise ValueError(f"max_stage must be 1, 2 or 3, got {max_stage!r}")

    paths = make_paths(base_dir)
    out = RunLogger(log=log, warn=warn, heading=heading)
    summary = PipelineSummary()

    out.heading("Incremental pyramid processing")
    out.log(f"Config: stage={max_stage}, dry-run={dry_run}, auto-write={auto_write}")
    out.log(f"Base dir: {paths.base_dir}")

    out.heading("Stage 1: discover unprocessed journals")
    discovery = discover_journals(paths, only_file)
    ctx = RunContext(
        paths=paths,
        config=config,
        call_agent=call_agent,
        out=out,
        registry=AbbrevRegistry.load(paths.atoms_readme),
        used_abbrevs=set(discovery.used_abbrevs),
        groups_parser=groups_parser or DelimitedGroupsParser(),
        dry_run=dry_run,
        auto_write=auto_write,
        verbose=verbose,
        today=today_iso(),
    )
    _report_discovery(ctx, discovery.entries)

    new_atoms: List[Path] = []
    if discovery.entries:
        new_atoms = extract_atoms(ctx, discovery.entries)
    summary.atoms_processed = len(new_atoms)

    if max_stage >= 2:
        to_group = new_atoms
        if not new_atoms:
            to_group = collect_ungrouped_atom_paths(paths)
            if to_group:
                out.log(f"No new atoms; grouping {len(to_group)} ungrouped atom files")
        assign_groups(ctx, to_group, summary)

    if max_stage >= 3:
        update_synthesis(ctx, summary, pending_entries=len(discovery.entries),
                         force=force_synthesis)

    summary.warnings = list(out.warnings)
    out.heading("Done")
    out.log(f"atoms={summary.atoms_processed} groups_written={summary.groups_written} "
            f"groups_updated={summary.groups_updated} synthesis_updated={summary.synthesis_updated} "
            f"warnings={len(summary.warnings)}")
    return summary
