"""Shared fixtures: a freshly initialised knowledge prism and a stub model."""
import re
import string
from pathlib import Path

import pytest

from prism.config import PrismConfig
from prism.core.formats import INDEX_ROWS_OPEN
from prism.core.scaffold import init_prism
from prism.lib.llm_clients import reset_token_usage
from prism.lib.paths import make_paths
from prism.lib.providers import ApiError

_FIXED_ABBREV_RE = re.compile(r"This journal's abbreviation is \*\*([A-Z]{2})\*\*")
_TAKEN_RE = re.compile(r"Already taken \(do not reuse\): ([^\n]*)")
_TITLE_RE = re.compile(r"^- Title: (.*)$", re.MULTILINE)
_SOURCE_RE = re.compile(r"^- Source path: (.*)$", re.MULTILINE)
_FIRST_NEW_RE = re.compile(r"New numbers start at G(\d+)")
_SUMMARY_ID_RE = re.compile(r"^- ([A-Z]{2}-\d{2}):", re.MULTILINE)
_SUMMARY_HEAD_RE = re.compile(r"^\*\*([A-Z]{2})\*\* \((\S+)\)", re.MULTILINE)
_CHANGELOG_DATE_RE = re.compile(r"=== CHANGELOG ===\n\| (\d{4}-\d{2}-\d{2})")
_GROUP_ID_RE = re.compile(r"\bG\d{2}\b")


def make_atom(title: str, abbrev: str, source: str = "../../../../journal/x.md",
              rows: int = 2) -> str:
    """A valid atom file body."""
    lines = [
        f"# {title}",
        "",
        f"> Source: [{source}]({source})",
        f"> Abbrev: {abbrev}",
        "",
        "## Atoms",
        "",
        "| ID    | Kind | Content | Locator |",
        "| ----- | ---- | ------- | ------- |",
    ]
    for i in range(1, rows + 1):
        lines.append(f"| {abbrev}-{i:02d} | fact | Point {i} of {title} | Section {i} |")
    return "\n".join(lines) + "\n"


class StubModel:
    """Deterministic stand-in for the model, answering by prompt kind.

    ``fail_on`` substrings make a call raise ``ApiError``; ``overrides`` are
    ``(substring, response)`` pairs checked before the default answers.
    """

    def __init__(self):
        self.prompts = []
        self.fail_on = []
        self.overrides = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        for marker in self.fail_on:
            if marker in prompt:
                raise ApiError("API error 500: boom", status=500)
        for marker, response in self.overrides:
            if marker in prompt:
                return response
        if "Extract the information units" in prompt:
            return self._atom(prompt)
        if INDEX_ROWS_OPEN in prompt and "## Atoms to group" in prompt:
            return self._groups(prompt)
        if "Update synthesis.md" in prompt:
            return self._synthesis(prompt)
        return "No changes suggested."

    def count(self, marker: str) -> int:
        return sum(1 for p in self.prompts if marker in p)

    def _atom(self, prompt: str) -> str:
        m = _FIXED_ABBREV_RE.search(prompt)
        if m:
            code = m.group(1)
        else:
            taken = {c.strip() for c in _TAKEN_RE.search(prompt).group(1).split(",")}
            code = next(
                a + b for a in string.ascii_uppercase for b in string.ascii_uppercase
                if a + b not in taken
            )
        title = _TITLE_RE.search(prompt).group(1)
        source = _SOURCE_RE.search(prompt).group(1)
        return make_atom(title, code, source)

    def _groups(self, prompt: str) -> str:
        gid = f"G{int(_FIRST_NEW_RE.search(prompt).group(1)):02d}"
        section = prompt.split("## Atoms to group", 1)[1]
        ids = _SUMMARY_ID_RE.findall(section)
        stems = dict(_SUMMARY_HEAD_RE.findall(section))
        today = _CHANGELOG_DATE_RE.search(prompt).group(1)
        rows = "\n".join(f"| {i} | {stems.get(i[:2], '?')} | summary |" for i in ids)
        return (
            f"=== GROUP: {gid}-theme.md ===\n"
            f"# {gid}: Notes converge on one theme\n\n"
            "> They agree.\n\n"
            "## Atoms\n\n"
            "| ID | Source | Summary |\n"
            "| -- | ------ | ------- |\n"
            f"{rows}\n\n"
            "## Ordering\n\n"
            "Structure order.\n"
            "=== END ===\n\n"
            "=== INDEX_ROWS ===\n"
            f"| {gid} | Notes converge on one theme | {len(ids)} | 2026-01 |\n"
            "=== END ===\n\n"
            "=== CHANGELOG ===\n"
            f"| {today} | Created {gid} | new atoms |\n"
            "=== END ==="
        )

    def _synthesis(self, prompt: str) -> str:
        index_part = prompt.split("## Current group INDEX", 1)[1]
        gids = sorted(set(_GROUP_ID_RE.findall(index_part)))
        return (
            "# Synthesis\n\n"
            "Converging theses.\n\n"
            "## Top-level candidates\n\n"
            "| ID | Thesis | Supporting groups |\n"
            "| -- | ------ | ----------------- |\n"
            f"| S1 | One theme | {', '.join(gids)} |\n\n"
            "## Changelog\n\n"
            "| Date | Change |\n"
            "| ---- | ------ |\n"
            "| 2026-01-01 | Updated |\n"
        )


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    """Keep developer env vars and token counters out of the tests."""
    for key in ("KNOWLEDGE_PRISM_API_BASE_URL", "KNOWLEDGE_PRISM_API_MODEL",
                "KNOWLEDGE_PRISM_API_KEY"):
        monkeypatch.delenv(key, raising=False)
    reset_token_usage()
    yield
    reset_token_usage()


@pytest.fixture
def prism_base(tmp_path) -> Path:
    """A knowledge prism created by ``init_prism``."""
    return init_prism(tmp_path / "kb", name="Test Prism").base_dir


@pytest.fixture
def prism_paths(prism_base):
    return make_paths(prism_base)


@pytest.fixture
def config() -> PrismConfig:
    return PrismConfig(name="Test Prism")


@pytest.fixture
def stub_model() -> StubModel:
    return StubModel()


@pytest.fixture
def write_journal(prism_paths):
    """``write_journal("2026-01-05", "topic.md", "# Title\\n...")`` -> Path."""

    def _write(date_dir: str, name: str, body: str = None) -> Path:
        path = prism_paths.journal_dir / date_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body or f"# {name[:-3].replace('-', ' ').title()}\n\nSome notes.\n",
                        encoding="utf-8")
        return path

    return _write


@pytest.fixture
def collect():
    """A (log, warn) pair of list-backed sinks."""

    class Sink:
        def __init__(self):
            self.logs = []
            self.warns = []

        def log(self, msg):
            self.logs.append(msg)

        def warn(self, msg):
            self.warns.append(msg)

        @property
        def text(self):
            return "\n".join(self.logs)

    return Sink()
