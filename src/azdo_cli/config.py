"""Configuration: catalog store, environment, credentials and logging.

Provides the project-local catalog (``azdo.config.json``) load/save,
``.env`` loading and upserting, personal access token lookup, poll
interval parsing, ``AZDO_*`` settings overrides and logging setup.
"""

from __future__ import annotations

from collections.abc import Mapping
import json
import logging
import math
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from azdo_cli.errors import ConfigMissingError, InvalidInputError
from azdo_cli.models import CatalogConfig, CliSettings, ServiceConfig
from azdo_cli.monitor import DEFAULT_POLL_MS
from azdo_cli.selection import CONFIG_FILENAME

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "develop"
DEFAULT_PAT_ENV = "AZDO_PAT"
CREDENTIALS_DIR = ".azdo-cli"
CREDENTIALS_FILE = "credentials.json"


# ---------------------------------------------------------------------------
# Catalog store
# ---------------------------------------------------------------------------


def get_config_path(cwd: str | Path | None = None) -> Path:
    """Path of the catalog file in *cwd* (default: the current directory)."""
    return Path(cwd or Path.cwd()) / CONFIG_FILENAME


def load_catalog(cwd: str | Path | None = None) -> CatalogConfig | None:
    """Load the catalog from *cwd*.

    Args:
        cwd: Project root; defaults to the current directory.

    Returns:
        The catalog, or ``None`` when the file does not exist.

    Raises:
        ConfigMissingError: If the file exists but is not a valid catalog.
    """
    path = get_config_path(cwd)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return CatalogConfig.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as exc:
        msg = f"Invalid {CONFIG_FILENAME}: {exc}"
        raise ConfigMissingError(msg) from exc


def require_catalog(cwd: str | Path | None = None) -> CatalogConfig:
    """Like ``load_catalog`` but a missing file is an error."""
    catalog = load_catalog(cwd)
    if catalog is None:
        msg = f"Missing {CONFIG_FILENAME}. Run azdo init first."
        raise ConfigMissingError(msg)
    return catalog


def save_catalog(catalog: CatalogConfig, cwd: str | Path | None = None) -> Path:
    """Write the catalog as indented JSON with a trailing newline."""
    path = get_config_path(cwd)
    path.write_text(json.dumps(catalog.to_document(), indent=2) + "\n", encoding="utf-8")
    logger.debug("Wrote %s (%d pipelines)", path, len(catalog.pipelines))
    return path


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


def load_env_files(cwd: str | Path | None = None) -> None:
    """Load ``.env`` and then ``.env.internal`` (overriding) from *cwd*."""
    base = Path(cwd or Path.cwd())
    load_dotenv(base / ".env", override=False)
    load_dotenv(base / ".env.internal", override=True)


def optional_env(name: str, environ: Mapping[str, str] | None = None) -> str | None:
    """Return the variable's value, treating unset and blank alike."""
    env = os.environ if environ is None else environ
    value = env.get(name)
    return value if value and value.strip() else None


def default_branch_from_env(environ: Mapping[str, str] | None = None) -> str:
    """``AZDO_DEFAULT_BRANCH``, or ``develop``."""
    value = optional_env("AZDO_DEFAULT_BRANCH", environ)
    return value.strip() if value else DEFAULT_BRANCH


def upsert_env_var(cwd: str | Path, key: str, value: str) -> Path:
    """Set ``KEY=value`` in ``cwd/.env``, creating the file if needed.

    Every existing ``KEY=`` line is replaced; otherwise the line is
    appended. The file always ends with a single newline.

    Args:
        cwd: Directory holding the ``.env`` file.
        key: Variable name.
        value: Variable value.

    Returns:
        Path of the ``.env`` file.
    """
    env_path = Path(cwd) / ".env"
    line = f"{key}={value}"
    if not env_path.exists():
        env_path.write_text(line + "\n", encoding="utf-8")
        return env_path

    prefix = f"{key}="
    lines = env_path.read_text(encoding="utf-8").splitlines()
    found = any(existing.startswith(prefix) for existing in lines)
    lines = [line if existing.startswith(prefix) else existing for existing in lines]
    if not found:
        lines.append(line)
    while lines and lines[-1].strip() == "":
        lines.pop()
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return env_path


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


def get_credentials_path() -> Path:
    """Location of the stored token file under the home directory."""
    return Path.home() / CREDENTIALS_DIR / CREDENTIALS_FILE


def load_stored_pat(path: Path | None = None) -> str | None:
    """Read a stored token; unreadable or blank files are ignored."""
    store = path or get_credentials_path()
    if not store.exists():
        return None
    try:
        data = json.loads(store.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.debug("Ignoring unreadable credentials file %s", store)
        return None
    pat = data.get("pat") if isinstance(data, dict) else None
    if not isinstance(pat, str) or not pat.strip():
        return None
    return pat.strip()


def resolve_pat(
    pat_env: str = DEFAULT_PAT_ENV,
    environ: Mapping[str, str] | None = None,
    store_path: Path | None = None,
) -> str:
    """Find the personal access token.

    Args:
        pat_env: Environment variable to check first.
        environ: Environment mapping; ``os.environ`` when omitted.
        store_path: Credentials file; the default location when omitted.

    Returns:
        The token.

    Raises:
        ConfigMissingError: If no token is available.
    """
    pat = optional_env(pat_env, environ) or load_stored_pat(store_path)
    if not pat:
        msg = f"Not authenticated. Set {pat_env} or store a token in {get_credentials_path()}"
        raise ConfigMissingError(msg)
    return pat.strip()


def service_config_from_env(environ: Mapping[str, str] | None = None) -> ServiceConfig:
    """Build service settings purely from ``AZDO_*`` variables.

    Raises:
        ConfigMissingError: If org URL, project or token is missing.
    """
    org_url = optional_env("AZDO_ORG_URL", environ)
    if not org_url:
        msg = "Missing env AZDO_ORG_URL"
        raise ConfigMissingError(msg)
    project = optional_env("AZDO_PROJECT", environ)
    if not project:
        msg = "Missing env AZDO_PROJECT"
        raise ConfigMissingError(msg)
    return ServiceConfig(
        org_url=org_url,
        project=project,
        pat=resolve_pat(environ=environ),
        default_branch=default_branch_from_env(environ),
    )


def service_config_for_catalog(
    catalog: CatalogConfig,
    environ: Mapping[str, str] | None = None,
) -> ServiceConfig:
    """Build service settings from the catalog, falling back to the environment.

    Raises:
        ConfigMissingError: If org URL or project is missing in both, or
            no token is available.
    """
    org_url = catalog.org_url or optional_env("AZDO_ORG_URL", environ)
    project = catalog.project or optional_env("AZDO_PROJECT", environ)
    if not org_url or not project:
        msg = "Missing AZDO_ORG_URL/AZDO_PROJECT or orgUrl/project in config"
        raise ConfigMissingError(msg)
    pat_env = catalog.auth.pat_env if catalog.auth else DEFAULT_PAT_ENV
    return ServiceConfig(
        org_url=org_url,
        project=project,
        pat=resolve_pat(pat_env, environ),
        default_branch=default_branch_from_env(environ),
    )


# ---------------------------------------------------------------------------
# Poll interval
# ---------------------------------------------------------------------------


def parse_poll_ms(value: str | int | float | None) -> int:
    """Lenient poll interval: anything missing or invalid becomes 7000 ms."""
    if value is None or value == "":
        return DEFAULT_POLL_MS
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return DEFAULT_POLL_MS
    if not math.isfinite(parsed) or parsed <= 0:
        return DEFAULT_POLL_MS
    return int(parsed)


def parse_poll_ms_strict(value: str) -> int:
    """Strict poll interval for explicit ``--poll`` values.

    Raises:
        InvalidInputError: If *value* is not a positive number.
    """
    try:
        parsed = float(value)
    except ValueError:
        parsed = -1.0
    if not math.isfinite(parsed) or parsed <= 0:
        msg = "--poll must be a positive number"
        raise InvalidInputError(msg)
    return int(parsed)


# ---------------------------------------------------------------------------
# Settings overrides
# ---------------------------------------------------------------------------

_ENV_FIELD_MAP: dict[str, str] = {
    "AZDO_LOG_LEVEL": "log_level",
    "AZDO_LOG_FILE": "log_file",
}
"""Maps environment variable names to CliSettings field names."""

_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})


def apply_env_overrides(
    settings: CliSettings,
    environ: Mapping[str, str] | None = None,
) -> CliSettings:
    """Apply ``AZDO_*`` overrides to fields still at their defaults.

    Invalid values (unknown level names) are ignored.

    Args:
        settings: Settings built from command-line flags.
        environ: Environment mapping; ``os.environ`` when omitted.

    Returns:
        A new ``CliSettings`` with overrides applied.
    """
    defaults = CliSettings()
    overrides: dict[str, Any] = {}
    for env_var, field_name in _ENV_FIELD_MAP.items():
        raw = optional_env(env_var, environ)
        if raw is None:
            continue
        if getattr(settings, field_name) != getattr(defaults, field_name):
            continue
        if field_name == "log_level":
            level = raw.strip().upper()
            if level in _LOG_LEVELS:
                overrides[field_name] = level
        else:
            overrides[field_name] = raw.strip()

    if not overrides:
        return settings
    return settings.model_copy(update=overrides)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s - %(message)s"


def configure_logging(settings: CliSettings) -> None:
    """Configure the ``azdo_cli`` logger.

    Adds a console handler and, when ``settings.log_file`` is set, a
    file handler. Repeated calls do not duplicate handlers.

    Args:
        settings: Provides ``log_level`` and optional ``log_file``.
    """
    azdo_logger = logging.getLogger("azdo_cli")
    azdo_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.WARNING))

    if not any(type(h) is logging.StreamHandler for h in azdo_logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(_LOG_FORMAT))
        azdo_logger.addHandler(console)

    if settings.log_file is not None:
        target = os.path.abspath(settings.log_file)
        has_file = any(
            isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == target
            for h in azdo_logger.handlers
        )
        if not has_file:
            file_handler = logging.FileHandler(target)
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            azdo_logger.addHandler(file_handler)
