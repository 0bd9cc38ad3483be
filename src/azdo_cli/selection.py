"""Pipeline selection against the local catalog.

Maps a user-supplied pipeline reference (numeric id or catalog key) to
a ``PipelineSelection``, and builds catalog keys from remote pipeline
names when the catalog is first generated.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
import logging
import re

from azdo_cli.errors import ConfigMissingError, InvalidInputError, UnknownPipelineError
from azdo_cli.models import CatalogConfig, PipelineEntry, PipelineInfo, PipelineSelection

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "azdo.config.json"

CatalogItem = tuple[str, PipelineEntry]
"""A catalog key paired with its entry."""

Chooser = Callable[[Sequence[CatalogItem]], str]
"""Picks one catalog key out of the listed items (usually by prompting)."""

_SLUG_SEPARATORS: re.Pattern[str] = re.compile(r"[^a-z0-9]+")


# ---------------------------------------------------------------------------
# Catalog key generation
# ---------------------------------------------------------------------------


def slugify_pipeline_name(name: str) -> str:
    """Build a catalog key from a pipeline display name.

    Example: ``"Android - Staging"`` becomes ``"android_staging"``.
    """
    slug = _SLUG_SEPARATORS.sub("_", name.lower()).strip("_")
    return slug or "pipeline"


def build_pipeline_map(pipelines: Iterable[PipelineInfo]) -> dict[str, PipelineEntry]:
    """Key remote pipelines by slugified name.

    A name that slugifies to an existing key gets its id appended
    (``"{slug}_{id}"``).

    Args:
        pipelines: Pipelines as listed by the service.

    Returns:
        Catalog entries in listing order.
    """
    catalog: dict[str, PipelineEntry] = {}
    for pipeline in pipelines:
        key = slugify_pipeline_name(pipeline.name)
        if key in catalog:
            key = f"{key}_{pipeline.id}"
        catalog[key] = PipelineEntry(id=pipeline.id, name=pipeline.name)
    return catalog


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def _to_selection(key: str, entry: PipelineEntry) -> PipelineSelection:
    return PipelineSelection(
        id=entry.id,
        key=key,
        name=entry.name or key,
        branch=entry.branch,
        definition_path=entry.path,
    )


def _parse_pipeline_id(reference: str) -> int | None:
    try:
        return int(reference.strip())
    except ValueError:
        return None


def resolve_pipeline_selection(
    catalog: CatalogConfig,
    reference: str | None = None,
    *,
    choose: Chooser | None = None,
) -> PipelineSelection:
    """Resolve a pipeline reference against the catalog.

    A numeric *reference* is always accepted; catalog metadata is
    attached when an entry has the same id. Any other reference must
    be an exact catalog key. Without a reference the user picks an
    entry through *choose*.

    Args:
        catalog: The loaded catalog.
        reference: Pipeline id or catalog key, if given.
        choose: Picks a catalog key when no reference was given.

    Returns:
        The selected pipeline.

    Raises:
        UnknownPipelineError: If a non-numeric reference is not a catalog key,
            or *choose* returns a key that is not in the catalog.
        ConfigMissingError: If no reference is given and the catalog is empty.
        InvalidInputError: If no reference is given and there is no chooser.
    """
    entries: list[CatalogItem] = list(catalog.pipelines.items())

    if reference:
        pipeline_id = _parse_pipeline_id(reference)
        if pipeline_id is not None:
            for key, entry in entries:
                if entry.id == pipeline_id:
                    return _to_selection(key, entry)
            logger.debug("Pipeline id %d is not in the catalog; using it as is", pipeline_id)
            return PipelineSelection(id=pipeline_id)

        if reference in catalog.pipelines:
            return _to_selection(reference, catalog.pipelines[reference])
        msg = f'Unknown pipeline "{reference}" in {CONFIG_FILENAME}'
        raise UnknownPipelineError(msg)

    if not entries:
        msg = f"No pipelines found in {CONFIG_FILENAME}"
        raise ConfigMissingError(msg)
    if choose is None:
        msg = "A pipeline id or key is required"
        raise InvalidInputError(msg)

    picked = choose(entries)
    if picked not in catalog.pipelines:
        msg = "Invalid pipeline selection"
        raise UnknownPipelineError(msg)
    return _to_selection(picked, catalog.pipelines[picked])


def describe_catalog_item(item: CatalogItem) -> str:
    """One-line label for a catalog entry in a selection menu."""
    key, entry = item
    return f"{key} - {entry.name or 'pipeline'} (#{entry.id})"
