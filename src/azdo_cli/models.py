"""Core data models for the azdo pipeline helper.

Defines shared Pydantic models and enums used across parameter
resolution, definition lookup, pipeline selection, the service client
and the run monitor. Every other module imports its types from here.
"""

from __future__ import annotations

from enum import StrEnum
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

ParamValue = str | int | float | bool | list[Any] | dict[str, Any] | None
"""Any value a template parameter may carry once resolved."""


# ---------------------------------------------------------------------------
# Template parameters
# ---------------------------------------------------------------------------


class ParameterType(StrEnum):
    """Concrete kinds a template parameter value can take.

    Declared ``type`` fields are kept verbatim on ``ParameterSpec`` (the
    service knows more kinds than these, e.g. ``stepList``); this enum
    covers the kinds that drive prompting and coercion.
    """

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


def infer_param_type(value: Any) -> ParameterType:
    """Infer the parameter kind of a concrete default value.

    ``None`` (absent or YAML ``null``) is treated as a string.

    Args:
        value: A value parsed from a definition document.

    Returns:
        The matching ``ParameterType``.
    """
    match value:
        case None:
            return ParameterType.STRING
        case bool():
            return ParameterType.BOOLEAN
        case int() | float():
            return ParameterType.NUMBER
        case list() | tuple():
            return ParameterType.ARRAY
        case dict():
            return ParameterType.OBJECT
        case _:
            return ParameterType.STRING


class ParameterSpec(BaseModel):
    """A single declared template parameter.

    Whether a default was declared is tracked through pydantic's
    ``model_fields_set`` so that an explicit ``default: null`` stays
    distinguishable from no default at all.

    Attributes:
        name: Parameter name, unique within a definition.
        type: Declared type, kept verbatim (``string``, ``boolean``, ...).
        default: Declared default value, if any.
        allowed_values: Ordered candidate values, if the parameter is enumerated.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = ParameterType.STRING.value
    default: Any = None
    allowed_values: list[Any] | None = None

    @field_validator("name")
    @classmethod
    def _name_not_empty(cls, v: str) -> str:
        """Reject empty parameter names."""
        if not v:
            msg = "Parameter name must not be empty"
            raise ValueError(msg)
        return v

    @property
    def has_default(self) -> bool:
        """Whether the definition declared a default for this parameter."""
        return "default" in self.model_fields_set

    @property
    def kind(self) -> str:
        """Lower-cased declared type used to pick a prompt style."""
        return self.type.lower() if self.type else ParameterType.STRING.value


# ---------------------------------------------------------------------------
# Local catalog (azdo.config.json)
# ---------------------------------------------------------------------------


class PipelineEntry(BaseModel):
    """One catalog entry: a short key's remote pipeline and local hints.

    Attributes:
        id: Remote pipeline id.
        name: Display name of the pipeline.
        branch: Branch to run when none is given.
        path: Project-relative path of the local definition file.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    name: str | None = None
    branch: str | None = None
    path: str | None = None


class AuthSettings(BaseModel):
    """Where to look for the personal access token."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    pat_env: str = Field(default="AZDO_PAT", alias="patEnv")


class CatalogDefaults(BaseModel):
    """Project-wide defaults stored in the catalog."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    branch: str | None = None
    poll_ms: int | float | str | None = Field(default=None, alias="pollMs")

    @field_validator("poll_ms", mode="before")
    @classmethod
    def _keep_raw_poll(cls, v: Any) -> Any:
        """Keep scalars as written; the interval is parsed leniently at use."""
        if isinstance(v, bool) or not isinstance(v, int | float | str):
            return None
        return v


def _catalog_id(value: Any) -> int | None:
    """Integer id from a catalog entry; ``None`` for booleans and fractions."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


class CatalogConfig(BaseModel):
    """The locally persisted catalog document.

    Field aliases keep the on-disk document in camelCase while the
    Python side uses snake_case.

    Attributes:
        org_url: Organization URL, e.g. ``https://dev.azure.com/acme``.
        project: Project name.
        auth: Token lookup settings.
        defaults: Default branch and poll interval.
        pipelines: Mapping of catalog key to pipeline entry.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    org_url: str | None = Field(default=None, alias="orgUrl")
    project: str | None = None
    auth: AuthSettings | None = None
    defaults: CatalogDefaults | None = None
    pipelines: dict[str, PipelineEntry] = Field(default_factory=dict)

    @field_validator("pipelines", mode="before")
    @classmethod
    def _drop_invalid_entries(cls, v: Any) -> Any:
        """Drop entries whose ``id`` is not an integer instead of failing."""
        if not isinstance(v, dict):
            return {}
        kept: dict[str, Any] = {}
        for key, entry in v.items():
            if isinstance(entry, PipelineEntry):
                kept[key] = entry
                continue
            if not isinstance(entry, dict):
                logger.debug("Dropping catalog entry %r: not a mapping", key)
                continue
            pipeline_id = _catalog_id(entry.get("id"))
            if pipeline_id is None:
                logger.debug("Dropping catalog entry %r: invalid id %r", key, entry.get("id"))
                continue
            kept[key] = {**entry, "id": pipeline_id}
        return kept

    def to_document(self) -> dict[str, Any]:
        """Serialize to the on-disk camelCase document."""
        return self.model_dump(by_alias=True, exclude_none=True)


class PipelineSelection(BaseModel):
    """The pipeline chosen for one invocation.

    Only ``id`` is authoritative; ``branch`` and ``definition_path`` are
    hints carried over from the catalog.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    key: str | None = None
    name: str | None = None
    branch: str | None = None
    definition_path: str | None = None


# ---------------------------------------------------------------------------
# Local definition lookup
# ---------------------------------------------------------------------------


class ScoredCandidate(BaseModel):
    """A local YAML file and its match score against a pipeline."""

    model_config = ConfigDict(frozen=True)

    path: str
    score: int = Field(ge=0)


class UniqueMatch(BaseModel):
    """Exactly one candidate holds the top score."""

    model_config = ConfigDict(frozen=True)

    path: str


class AmbiguousMatch(BaseModel):
    """Several candidates tie at the top score, in enumeration order."""

    model_config = ConfigDict(frozen=True)

    candidates: list[ScoredCandidate]

    @property
    def first(self) -> str:
        """Path of the first tied candidate."""
        return self.candidates[0].path


class NoMatch(BaseModel):
    """No candidate scored above zero."""

    model_config = ConfigDict(frozen=True)


LocateResult = UniqueMatch | AmbiguousMatch | NoMatch


# ---------------------------------------------------------------------------
# Pipeline service
# ---------------------------------------------------------------------------


class RunState(StrEnum):
    """Lifecycle states reported by the service for a run."""

    UNKNOWN = "unknown"
    QUEUED = "queued"
    IN_PROGRESS = "inProgress"
    CANCELING = "canceling"
    COMPLETED = "completed"


class RunResult(StrEnum):
    """Outcome of a completed run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    UNKNOWN = "unknown"


class RunInfo(BaseModel):
    """Snapshot of a run as returned by one service call.

    ``state`` and ``result`` are kept as plain strings because the
    service may report values outside the enums above.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    state: str | None = None
    result: str | None = None
    url: str | None = None

    @property
    def is_completed(self) -> bool:
        """Whether the run reached its terminal state."""
        return self.state == RunState.COMPLETED

    @property
    def succeeded(self) -> bool:
        """Whether the run completed successfully."""
        return self.result == RunResult.SUCCEEDED


class PipelineInfo(BaseModel):
    """A pipeline as listed by the service."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    folder: str | None = None


class RepositoryRef(BaseModel):
    """Repository backing a YAML pipeline."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str | None = None
    name: str | None = None
    type: str | None = None
    default_branch: str | None = Field(default=None, alias="defaultBranch")


class PipelineConfiguration(BaseModel):
    """How a pipeline is configured (YAML file, designer, ...)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str | None = None
    path: str | None = None
    repository: RepositoryRef | None = None


class PipelineDefinition(BaseModel):
    """Full pipeline definition as returned by the service."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    name: str
    folder: str | None = None
    configuration: PipelineConfiguration | None = None


class DefinitionSource(BaseModel):
    """Remote definition file contents, when the service can provide them."""

    model_config = ConfigDict(frozen=True)

    content: str | None = None
    path: str | None = None
    repository_type: str | None = None


class ServiceConfig(BaseModel):
    """Connection settings for the pipeline service.

    Attributes:
        org_url: Organization URL.
        project: Project name.
        pat: Personal access token.
        default_branch: Branch used when none is given.
    """

    model_config = ConfigDict(frozen=True)

    org_url: str
    project: str
    pat: str
    default_branch: str = "develop"


# ---------------------------------------------------------------------------
# CLI settings
# ---------------------------------------------------------------------------


class CliSettings(BaseModel):
    """Process-wide CLI settings, passed explicitly to collaborators.

    Attributes:
        log_level: Logging level name.
        log_file: Optional log file path.
        color: Force color on/off; ``None`` auto-detects.
    """

    model_config = ConfigDict(frozen=True)

    log_level: str = "WARNING"
    log_file: str | None = None
    color: bool | None = None
