"""Tests for project metadata in pyproject.toml."""

import tomllib
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


def _project():
    with open(ROOT / "pyproject.toml", "rb") as fh:
        return tomllib.load(fh)["project"]


class TestProjectMetadata:
    def test_readme_is_the_project_readme(self):
        readme = _project()["readme"]
        assert readme == "README.md"
        assert (ROOT / readme).read_text(encoding="utf-8").startswith("# PracticeHub Core")

    def test_runtime_stack_declared(self):
        deps = {d.split(">=")[0] for d in _project()["dependencies"]}
        assert {"Flask", "Flask-SQLAlchemy", "Flask-Migrate", "Flask-Cors", "Flask-Limiter"} <= deps
