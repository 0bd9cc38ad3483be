"""Shared fixtures for the azdo_cli test suite."""

from __future__ import annotations

from collections.abc import Iterator
import logging
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

from azdo_cli.models import (
    CatalogConfig,
    ParameterSpec,
    PipelineEntry,
    RunInfo,
    ServiceConfig,
)
import pytest

# ---------------------------------------------------------------------------
# Factory functions (plain functions, importable from conftest)
# ---------------------------------------------------------------------------


def make_spec(**overrides: Any) -> ParameterSpec:
    """Build a ParameterSpec with sensible defaults.

    Only keys present in *overrides* count as declared, so omitting
    ``default`` yields a spec without a default.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed ParameterSpec instance.
    """
    fields: dict[str, Any] = {"name": "param", "type": "string"}
    fields.update(overrides)
    return ParameterSpec(**fields)


def make_catalog(**overrides: Any) -> CatalogConfig:
    """Build a CatalogConfig with two pipelines.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed CatalogConfig instance.
    """
    fields: dict[str, Any] = {
        "org_url": "https://dev.azure.com/acme",
        "project": "Mobile",
        "pipelines": {
            "android_staging": PipelineEntry(
                id=12, name="Android Staging", branch="release", path="ci/android-staging.yml"
            ),
            "ios": PipelineEntry(id=34, name="iOS"),
        },
    }
    fields.update(overrides)
    return CatalogConfig(**fields)


def make_run(**overrides: Any) -> RunInfo:
    """Build a RunInfo with sensible defaults.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed RunInfo instance.
    """
    fields: dict[str, Any] = {
        "id": 501,
        "state": "inProgress",
        "result": None,
        "url": "https://dev.azure.com/acme/Mobile/_build/results?buildId=501",
    }
    fields.update(overrides)
    return RunInfo(**fields)


def make_service_config(**overrides: Any) -> ServiceConfig:
    """Build a ServiceConfig with sensible defaults."""
    fields: dict[str, Any] = {
        "org_url": "https://dev.azure.com/acme/",
        "project": "Mobile Banking",
        "pat": "secret-token",
        "default_branch": "develop",
    }
    fields.update(overrides)
    return ServiceConfig(**fields)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_prompter() -> MagicMock:
    """Return a MagicMock standing in for a Prompter.

    ``text`` returns an empty answer, ``confirm`` its initial value and
    ``select`` its initial value (or the first option) by default.
    """
    prompter = MagicMock()
    prompter.text = MagicMock(return_value="")

    def _select(message: str, options: Any, *, initial: Any = None) -> Any:
        if initial is not None:
            return initial
        return options[0][0]

    def _confirm(message: str, *, initial: bool = True) -> bool:
        return initial

    prompter.select = MagicMock(side_effect=_select)
    prompter.confirm = MagicMock(side_effect=_confirm)
    prompter.secret = MagicMock(return_value="typed-token")
    return prompter


@pytest.fixture()
def project_tree(tmp_path: Path) -> Path:
    """Provide a small project tree with pipeline YAML files.

    Layout::

        azure-pipelines.yml
        ci/android-staging.yml
        ci/ios.yml
        docs/readme.md
        node_modules/pkg/android-staging.yml   (ignored)
        .git/android-staging.yaml              (ignored)
    """
    root = tmp_path / "project"
    (root / "ci").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / "node_modules" / "pkg").mkdir(parents=True)
    (root / ".git").mkdir()

    (root / "azure-pipelines.yml").write_text("trigger: none\n", encoding="utf-8")
    (root / "ci" / "android-staging.yml").write_text(
        "parameters:\n"
        "  - name: versionCode\n"
        "    type: number\n"
        "    default: 41\n"
        "  - name: clean\n"
        "    type: boolean\n"
        "    default: false\n",
        encoding="utf-8",
    )
    (root / "ci" / "ios.yml").write_text("steps: []\n", encoding="utf-8")
    (root / "docs" / "readme.md").write_text("# docs\n", encoding="utf-8")
    (root / "node_modules" / "pkg" / "android-staging.yml").write_text("x: 1\n", encoding="utf-8")
    (root / ".git" / "android-staging.yaml").write_text("x: 1\n", encoding="utf-8")
    return root


@pytest.fixture()
def clean_azdo_logger() -> Iterator[logging.Logger]:
    """Remove handlers added to the ``azdo_cli`` logger during a test."""
    azdo_logger = logging.getLogger("azdo_cli")
    before = list(azdo_logger.handlers)
    level = azdo_logger.level
    yield azdo_logger
    for handler in azdo_logger.handlers:
        if handler not in before:
            handler.close()
    azdo_logger.handlers = before
    azdo_logger.setLevel(level)
