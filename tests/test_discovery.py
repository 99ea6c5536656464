"""Tests for work discovery over the knowledge-prism tree."""

import random

import pytest

from conftest import make_atom

from prism.core.discovery import (
    FILL,
    NEW,
    collect_all_atom_paths,
    collect_unreflected_groups,
    collect_ungrouped_atom_paths,
    discover_journals,
    find_max_group_num,
)
from prism.core.writers import AbbrevRegistry
from prism.lib.paths import make_paths

PLACEHOLDER = "# Pending\n\n(pending extraction)\n"


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


class TestDiscoverJournals:

    def test_empty_tree(self, tmp_path):
        result = discover_journals(make_paths(tmp_path))
        assert result.entries == []
        assert result.used_abbrevs == set()

    def test_classification(self, prism_paths, write_journal):
        write_journal("2026-01-05", "new-topic.md")
        write_journal("2026-01-05", "pending-topic.md")
        write_journal("2026-02-01", "done-topic.md")
        _write(prism_paths.atoms_dir / "2026-01" / "pending-topic.md", PLACEHOLDER)
        _write(prism_paths.atoms_dir / "2026-02" / "done-topic.md", make_atom("Done", "DT"))

        result = discover_journals(prism_paths)
        by_stem = {e.stem: e for e in result.entries}
        assert set(by_stem) == {"new-topic", "pending-topic"}
        assert by_stem["new-topic"].type == NEW
        assert by_stem["pending-topic"].type == FILL
        assert by_stem["new-topic"].atom_path == prism_paths.atoms_dir / "2026-01" / "new-topic.md"
        assert result.used_abbrevs == {"DT"}

    def test_fill_entry_carries_registered_abbrev(self, prism_paths, write_journal):
        write_journal("2026-01-05", "pending-topic.md")
        _write(prism_paths.atoms_dir / "2026-01" / "pending-topic.md", PLACEHOLDER)
        registry = AbbrevRegistry.load(prism_paths.atoms_readme)
        registry.register("pending-topic", "PT", "2026-01")
        registry.flush()

        entry = discover_journals(prism_paths).entries[0]
        assert entry.type == FILL
        assert entry.abbrev == "PT"

    def test_only_file(self, prism_paths, write_journal):
        write_journal("2026-01-05", "a.md")
        write_journal("2026-01-06", "b.md")
        result = discover_journals(prism_paths, only_file="b.md")
        assert [e.filename for e in result.entries] == ["b.md"]

    def test_entries_ordered_by_date_then_name(self, prism_paths, write_journal):
        write_journal("2026-02-01", "a.md")
        write_journal("2026-01-01", "z.md")
        write_journal("2026-01-01", "m.md")
        names = [(e.date_dir, e.filename) for e in discover_journals(prism_paths).entries]
        assert names == [("2026-01-01", "m.md"), ("2026-01-01", "z.md"), ("2026-02-01", "a.md")]

    @pytest.mark.parametrize("seed", range(8))
    def test_random_trees_classified(self, tmp_path, seed):
        rng = random.Random(seed)
        paths = make_paths(tmp_path)
        expected = {}
        codes = iter(f"{a}{b}" for a in "ABCDEFGHIJ" for b in "KLMNOPQRST")
        for day in rng.sample(range(1, 28), rng.randint(1, 5)):
            date_dir = f"2026-0{rng.randint(1, 3)}-{day:02d}"
            for n in range(rng.randint(0, 4)):
                stem = f"note-{date_dir}-{n}"
                _write(paths.journal_dir / date_dir / f"{stem}.md", f"# {stem}\n")
                atom = paths.atoms_dir / date_dir[:7] / f"{stem}.md"
                state = rng.choice(["absent", "placeholder", "done"])
                if state == "placeholder":
                    _write(atom, PLACEHOLDER)
                    expected[stem] = FILL
                elif state == "done":
                    _write(atom, make_atom(stem, next(codes)))
                else:
                    expected[stem] = NEW

        result = discover_journals(paths)
        assert {e.stem: e.type for e in result.entries} == expected


class TestAtomCollections:

    def _group(self, paths, name, ids):
        rows = "\n".join(f"| {i} | src | summary |" for i in ids)
        _write(paths.groups_dir / name, f"# {name}\n\n| ID | Source | Summary |\n| -- | -- | -- |\n{rows}\n")

    def test_all_atoms_skip_placeholders(self, prism_paths):
        _write(prism_paths.atoms_dir / "2026-01" / "b.md", make_atom("B", "BB"))
        _write(prism_paths.atoms_dir / "2026-01" / "a.md", make_atom("A", "AA"))
        _write(prism_paths.atoms_dir / "2026-01" / "p.md", PLACEHOLDER)
        names = [p.name for p in collect_all_atom_paths(prism_paths)]
        assert names == ["a.md", "b.md"]

    def test_ungrouped(self, prism_paths):
        _write(prism_paths.atoms_dir / "2026-01" / "a.md", make_atom("A", "AA"))
        _write(prism_paths.atoms_dir / "2026-01" / "b.md", make_atom("B", "BB"))
        _write(prism_paths.atoms_dir / "2026-01" / "c.md", "# C\n\nno abbreviation\n")
        self._group(prism_paths, "G01-x.md", ["AA-01", "AA-02"])
        names = [p.name for p in collect_ungrouped_atom_paths(prism_paths)]
        assert names == ["b.md", "c.md"]

    def test_max_group_num(self, prism_paths):
        assert find_max_group_num(prism_paths) == 0
        self._group(prism_paths, "G02-x.md", [])
        self._group(prism_paths, "G11-y.md", [])
        assert find_max_group_num(prism_paths) == 11

    def test_unreflected_groups(self, prism_paths):
        self._group(prism_paths, "G01-x.md", [])
        self._group(prism_paths, "G02-y.md", [])
        prism_paths.synthesis_path.write_text("# Synthesis\n\n| S1 | t | G01 |\n")
        assert collect_unreflected_groups(prism_paths) == ["G02"]
