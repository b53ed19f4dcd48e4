"""Checks on the project metadata in pyproject.toml."""

from __future__ import annotations

from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


@pytest.fixture(scope="module")
def project():
    with PYPROJECT.open("rb") as fh:
        return tomllib.load(fh)["project"]


def test_no_readme_declared(project):
    # Only a real user-facing README may be published as the long description.
    assert "readme" not in project


def test_console_script(project):
    assert project["scripts"] == {"watchman": "watchman.cli:main"}


def test_test_extra_carries_async_sqlite(project):
    assert any(dep.startswith("aiosqlite") for dep in project["optional-dependencies"]["test"])
