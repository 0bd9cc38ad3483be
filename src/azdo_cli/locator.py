"""Local pipeline definition lookup.

Finds the YAML file in a project tree that most likely defines a given
pipeline, without asking the service. Every ``.yml``/``.yaml`` file
outside tooling directories is scored against the pipeline's catalog
key and display name; the best score wins. The heuristic is
best-effort: ties are reported as ``AmbiguousMatch`` and it is up to
the caller to pick one.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
import logging
from pathlib import Path, PurePosixPath
import re

from azdo_cli.errors import DefinitionUnreadableError
from azdo_cli.models import (
    AmbiguousMatch,
    LocateResult,
    NoMatch,
    ScoredCandidate,
    UniqueMatch,
)

logger = logging.getLogger(__name__)

IGNORED_DIRS: frozenset[str] = frozenset(
    {
        ".git",
        "node_modules",
        "dist",
        "build",
        ".next",
        ".turbo",
        ".idea",
        ".vscode",
        ".cache",
    }
)

YAML_SUFFIXES: frozenset[str] = frozenset({".yml", ".yaml"})

_NON_ALNUM: re.Pattern[str] = re.compile(r"[^a-z0-9]+")

# Score weights, one per independent signal.
KEY_IN_BASENAME = 8
NAME_IN_BASENAME = 6
KEY_IN_PATH = 4
NAME_IN_PATH = 3
AZURE_PIPELINES_BASENAME = 2
PIPELINE_IN_PATH = 1


def find_yaml_files(root: str | Path) -> list[str]:
    """List YAML files under *root*, skipping tooling directories.

    Directories are walked top-down with entries in sorted order, so the
    result order is stable across runs.

    Args:
        root: Project root to search.

    Returns:
        POSIX-style paths relative to *root*.
    """
    base = Path(root)
    results: list[str] = []
    pending: list[Path] = [base]
    while pending:
        current = pending.pop(0)
        subdirs: list[Path] = []
        for entry in sorted(current.iterdir(), key=lambda p: p.name):
            if entry.is_dir():
                if entry.name not in IGNORED_DIRS:
                    subdirs.append(entry)
            elif entry.is_file() and entry.suffix.lower() in YAML_SUFFIXES:
                results.append(entry.relative_to(base).as_posix())
        pending[:0] = subdirs
    return results


def normalize_for_match(value: str | None) -> str:
    """Lower-case *value* and drop every non-alphanumeric character."""
    if not value:
        return ""
    return _NON_ALNUM.sub("", value.lower())


def score_candidate(
    file_path: str,
    pipeline_key: str | None = None,
    pipeline_name: str | None = None,
) -> int:
    """Score how well *file_path* matches a pipeline.

    Args:
        file_path: Candidate path relative to the project root.
        pipeline_key: Catalog key of the pipeline.
        pipeline_name: Display name of the pipeline.

    Returns:
        Sum of the weights of every matching signal (0 when none match).
    """
    pure = PurePosixPath(file_path)
    base = pure.stem.lower()
    base_norm = normalize_for_match(base)
    path_norm = normalize_for_match(file_path)
    key_norm = normalize_for_match(pipeline_key)
    name_norm = normalize_for_match(pipeline_name)

    score = 0
    if key_norm and key_norm in base_norm:
        score += KEY_IN_BASENAME
    if name_norm and name_norm in base_norm:
        score += NAME_IN_BASENAME
    if key_norm and key_norm in path_norm:
        score += KEY_IN_PATH
    if name_norm and name_norm in path_norm:
        score += NAME_IN_PATH
    if "azure-pipelines" in base:
        score += AZURE_PIPELINES_BASENAME
    if "pipeline" in path_norm:
        score += PIPELINE_IN_PATH
    return score


def rank_candidates(
    files: Iterable[str],
    pipeline_key: str | None = None,
    pipeline_name: str | None = None,
) -> LocateResult:
    """Score *files* and classify the outcome.

    Args:
        files: Candidate paths in enumeration order.
        pipeline_key: Catalog key of the pipeline.
        pipeline_name: Display name of the pipeline.

    Returns:
        ``UniqueMatch`` for a single top scorer, ``AmbiguousMatch`` with
        the tied candidates in enumeration order, or ``NoMatch``.
    """
    scored = [
        ScoredCandidate(path=path, score=score_candidate(path, pipeline_key, pipeline_name))
        for path in files
    ]
    scored = [candidate for candidate in scored if candidate.score > 0]
    if not scored:
        return NoMatch()

    top_score = max(candidate.score for candidate in scored)
    top = [candidate for candidate in scored if candidate.score == top_score]
    if len(top) == 1:
        return UniqueMatch(path=top[0].path)
    return AmbiguousMatch(candidates=top)


def locate_definition(
    root: str | Path,
    pipeline_key: str | None = None,
    pipeline_name: str | None = None,
) -> LocateResult:
    """Find the local definition file for a pipeline under *root*.

    Args:
        root: Project root to search.
        pipeline_key: Catalog key of the pipeline.
        pipeline_name: Display name of the pipeline.

    Returns:
        The ranking outcome (see ``rank_candidates``).
    """
    files = find_yaml_files(root)
    result = rank_candidates(files, pipeline_key, pipeline_name)
    logger.debug(
        "Scored %d YAML files for key=%r name=%r: %s",
        len(files),
        pipeline_key,
        pipeline_name,
        type(result).__name__,
    )
    return result


def resolve_match(
    result: LocateResult,
    choose: Callable[[Sequence[ScoredCandidate]], str] | None = None,
) -> str | None:
    """Turn a ranking outcome into a single path.

    Ties go to *choose* when given (usually an interactive prompt) and
    otherwise to the first tied candidate in enumeration order.

    Args:
        result: Outcome of ``locate_definition``.
        choose: Picks one path among tied candidates.

    Returns:
        The chosen path, or ``None`` when nothing matched.
    """
    match result:
        case UniqueMatch(path=path):
            return path
        case AmbiguousMatch(candidates=candidates):
            return choose(candidates) if choose is not None else result.first
        case _:
            return None


def read_local_definition(root: str | Path, file_path: str) -> str:
    """Read a definition file relative to *root*.

    Args:
        root: Project root.
        file_path: Path relative to *root* (absolute paths are used as is).

    Returns:
        The file's text.

    Raises:
        DefinitionUnreadableError: If the file cannot be read.
    """
    full_path = Path(root) / file_path
    try:
        return full_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        msg = f"Could not read {file_path}: {exc}"
        raise DefinitionUnreadableError(msg) from exc
