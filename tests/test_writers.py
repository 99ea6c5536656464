"""Tests for the incremental writers: registry, groups INDEX, perspectives index."""

import pytest

from conftest import make_atom

from prism.core.discovery import discover_journals
from prism.core.parsers import GroupBlock, GroupsPayload, parse_groups_output
from prism.core.writers import (
    AbbrevRegistry,
    GroupsWriteStats,
    group_key,
    merge_index_rows,
    update_perspective_index,
    write_atom,
    write_groups_output,
    write_synthesis,
)
from prism.lib.text import parse_abbrev_table


def _payload(gid="G01", ids=("KB-01",), date="2026-02-01"):
    rows = "\n".join(f"| {i} | source | summary |" for i in ids)
    return parse_groups_output(
        f"=== GROUP: {gid}-theme.md ===\n# {gid}: Theme\n\n## Atoms\n\n"
        f"| ID | Source | Summary |\n| -- | ------ | ------- |\n{rows}\n=== END ===\n"
        f"=== INDEX_ROWS ===\n| {gid} | Theme | {len(ids)} | 2026-02 |\n=== END ===\n"
        f"=== CHANGELOG ===\n| {date} | Created {gid} | new atoms |\n=== END ==="
    )


class TestAbbrevRegistry:

    def test_register_and_flush(self, prism_paths):
        registry = AbbrevRegistry.load(prism_paths.atoms_readme)
        assert registry.has_table
        assert registry.register("topic-one", "TO", "2026-01")
        assert registry.dirty
        assert registry.flush() is True
        file_to_abbrev, used = parse_abbrev_table(prism_paths.atoms_readme.read_text())
        assert file_to_abbrev == {"topic-one": "TO"}
        assert registry.flush() is False

    def test_taken_code_refused(self, prism_paths):
        registry = AbbrevRegistry.load(prism_paths.atoms_readme)
        assert registry.register("topic-one", "TO", "2026-01")
        assert registry.register("topic-two", "TO", "2026-01") is False
        assert registry.abbrev_for("topic-two") is None

    def test_invalid_code_raises(self, prism_paths):
        registry = AbbrevRegistry.load(prism_paths.atoms_readme)
        with pytest.raises(ValueError):
            registry.register("topic-one", "to", "2026-01")

    def test_missing_readme_has_no_table(self, tmp_path):
        registry = AbbrevRegistry.load(tmp_path / "README.md")
        assert not registry.has_table
        assert registry.register("topic", "TO", "2026-01") is False

    def test_rows_land_in_table(self, prism_paths):
        registry = AbbrevRegistry.load(prism_paths.atoms_readme)
        registry.register("a", "AA", "2026-01")
        registry.register("b", "BB", "2026-01")
        registry.flush()
        lines = prism_paths.atoms_readme.read_text().rstrip("\n").split("\n")
        assert lines[-2].startswith("| AA ")
        assert lines[-1].startswith("| BB ")


class TestWriteAtom:

    def test_writes_file_and_registers(self, prism_paths, write_journal):
        write_journal("2026-01-05", "topic-one.md")
        entry = discover_journals(prism_paths).entries[0]
        registry = AbbrevRegistry.load(prism_paths.atoms_readme)
        used = set()
        warnings = []
        path = write_atom(entry, make_atom("Topic One", "TO"), "TO", registry, used, warnings.append)
        assert path == prism_paths.atoms_dir / "2026-01" / "topic-one.md"
        assert path.read_text().endswith("| Section 2 |\n")
        assert used == {"TO"}
        assert registry.abbrev_for("topic-one") == "TO"
        assert warnings == []

    def test_registered_stem_not_reregistered(self, prism_paths, write_journal):
        write_journal("2026-01-05", "topic-one.md")
        entry = discover_journals(prism_paths).entries[0]
        registry = AbbrevRegistry.load(prism_paths.atoms_readme)
        registry.register("topic-one", "TO", "2026-01")
        registry.flush()
        write_atom(entry, make_atom("Topic One", "TO"), "TO", registry, set(), lambda m: None)
        assert registry.dirty is False


class TestGroupKey:

    def test_numeric_key(self):
        assert group_key("| G07 | thesis |") == 7
        assert group_key("| G7 | thesis |") == 7
        assert group_key("| Group | Thesis |") is None


class TestMergeIndexRows:

    def test_add_update_and_changelog(self, prism_paths):
        text = prism_paths.groups_index.read_text()
        stats = GroupsWriteStats()
        merged = merge_index_rows(text, ["| G01 | Theme | 1 | 2026-01 |"],
                                  ["| 2026-02-01 | Created G01 | x |"], stats)
        stats2 = GroupsWriteStats()
        merged2 = merge_index_rows(merged, ["| G1 | Theme grown | 2 | 2026-01 |"], [], stats2)
        assert stats.index_added == 1 and stats.changelog_added == 1
        assert stats2.index_updated == 1 and stats2.index_added == 0
        assert "| G1 | Theme grown | 2 | 2026-01 |" in merged2
        assert "| G01 | Theme | 1 |" not in merged2
        assert merged2.index("| G1 |") < merged2.index("## Changelog")
        assert merged2.rstrip("\n").endswith("| 2026-02-01 | Created G01 | x |")


class TestWriteGroupsOutput:

    def test_new_then_update(self, prism_paths):
        logs = []
        stats = write_groups_output(prism_paths, _payload(), logs.append, logs.append)
        assert (stats.written, stats.updated) == (1, 0)
        assert (prism_paths.groups_dir / "G01-theme.md").exists()

        stats = write_groups_output(prism_paths, _payload(ids=("KB-01", "KB-02")),
                                    logs.append, logs.append)
        assert (stats.written, stats.updated) == (0, 1)
        assert "KB-02" in (prism_paths.groups_dir / "G01-theme.md").read_text()

    def test_idempotent(self, prism_paths):
        payload = _payload(ids=("KB-01", "KB-02"))
        write_groups_output(prism_paths, payload, lambda m: None, lambda m: None)
        snapshot = {p.name: p.read_text() for p in prism_paths.groups_dir.iterdir()}
        stats = write_groups_output(prism_paths, payload, lambda m: None, lambda m: None)
        assert {p.name: p.read_text() for p in prism_paths.groups_dir.iterdir()} == snapshot
        assert stats.index_added == 0 and stats.changelog_added == 0

    def test_unsafe_filename_skipped(self, prism_paths):
        warnings = []
        payload = GroupsPayload(groups=[GroupBlock("../../escape.md", "# G01: x")])
        stats = write_groups_output(prism_paths, payload, lambda m: None, warnings.append)
        assert stats.skipped == ["../../escape.md"]
        assert len(warnings) == 1
        assert not (prism_paths.base_dir / "pyramid" / "escape.md").exists()

    def test_missing_index_created_from_template(self, prism_paths):
        prism_paths.groups_index.unlink()
        write_groups_output(prism_paths, _payload(), lambda m: None, lambda m: None)
        text = prism_paths.groups_index.read_text()
        assert text.startswith("# Groups index")
        assert "| G01 | Theme | 1 | 2026-02 |" in text


class TestWriteSynthesis:

    def test_replaces_wholesale(self, prism_paths):
        path = write_synthesis(prism_paths, "# Synthesis\n\n## Top-level candidates\n\n\n")
        assert path.read_text() == "# Synthesis\n\n## Top-level candidates\n"


class TestUpdatePerspectiveIndex:

    def test_row_and_changelog(self, prism_paths):
        assert update_perspective_index(prism_paths, "P01-blog", "Blog", today="2026-03-01")
        text = prism_paths.structure_index.read_text()
        assert text.index("| P01  | [Blog](P01-blog/)") < text.index("## Changelog")
        assert text.rstrip("\n").endswith("| 2026-03-01 | Created P01-blog | Initialised from template |")

    def test_missing_index(self, prism_paths):
        prism_paths.structure_index.unlink()
        assert update_perspective_index(prism_paths, "P01-blog", "Blog") is False
