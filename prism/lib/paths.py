"""Fixed sub-paths of a knowledge prism base directory."""

from dataclasses import dataclass
from pathlib import Path
from typing import Union


@dataclass(frozen=True)
class PrismPaths:
    base_dir: Path
    journal_dir: Path
    atoms_dir: Path
    atoms_readme: Path
    groups_dir: Path
    groups_index: Path
    synthesis_path: Path
    structure_dir: Path
    template_dir: Path
    structure_index: Path
    outputs_dir: Path


def make_paths(base_dir: Union[str, Path]) -> PrismPaths:
    base = Path(base_dir)
    analysis = base / "pyramid" / "analysis"
    structure = base / "pyramid" / "structure"
    return PrismPaths(
        base_dir=base,
        journal_dir=base / "journal",
        atoms_dir=analysis / "atoms",
        atoms_readme=analysis / "atoms" / "README.md",
        groups_dir=analysis / "groups",
        groups_index=analysis / "groups" / "INDEX.md",
        synthesis_path=analysis / "synthesis.md",
        structure_dir=structure,
        template_dir=structure / "_template",
        structure_index=structure / "INDEX.md",
        outputs_dir=base / "outputs",
    )
