"""CLI entry point for the azdo pipeline helper.

Provides ``main()`` as the console-script entry point registered in
``pyproject.toml`` as ``azdo = "azdo_cli.cli:main"``. Commands:

- ``init``: generate ``azdo.config.json`` from the service's pipeline list.
- ``build``: pick a catalog pipeline, resolve its template parameters,
  trigger it and wait for the result.
- ``run``: trigger a pipeline by numeric id with explicit parameters.

``build`` and ``run`` forward any flag they do not recognise as a
template parameter. Exit code is 0 on success and 1 on any reported
error or a run that did not succeed.
"""

from __future__ import annotations

import argparse
from collections.abc import Sequence
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import sys
from typing import Any, NoReturn

from pydantic import ValidationError

from azdo_cli.config import (
    apply_env_overrides,
    configure_logging,
    default_branch_from_env,
    load_env_files,
    load_stored_pat,
    optional_env,
    parse_poll_ms,
    parse_poll_ms_strict,
    require_catalog,
    save_catalog,
    service_config_for_catalog,
    service_config_from_env,
    upsert_env_var,
)
from azdo_cli.errors import (
    AzdoError,
    ConfigMissingError,
    DefinitionUnreadableError,
    InvalidInputError,
    PromptCancelledError,
)
from azdo_cli.interactive import ConsolePrompter, Prompter, Validator, list_git_branches
from azdo_cli.locator import locate_definition, read_local_definition, resolve_match
from azdo_cli.models import (
    AuthSettings,
    CatalogConfig,
    CatalogDefaults,
    CliSettings,
    ParameterSpec,
    PipelineSelection,
    RunInfo,
    ServiceConfig,
)
from azdo_cli.monitor import DEFAULT_TIMEOUT_SECONDS, monitor_run_sync, report_state_changes
from azdo_cli.parameters import parse_parameter_specs, resolve_parameters
from azdo_cli.reporting import Reporter, should_use_color
from azdo_cli.selection import (
    CONFIG_FILENAME,
    build_pipeline_map,
    describe_catalog_item,
    resolve_pipeline_selection,
)
from azdo_cli.service import NATIVE_REPOSITORY_TYPE, AzdoClient

logger = logging.getLogger(__name__)

_EXAMPLES = """\
Examples:
  $ azdo init
  $ azdo build
  $ azdo run --pipeline <pipeline_id> --branch develop

Environment:
  AZDO_ORG_URL, AZDO_PROJECT, AZDO_PAT
"""

_BUILD_EPILOG = """\
Examples:
  $ azdo build
  $ azdo build --pipeline android_staging
  $ azdo build --no-prompt --versionCode 123 --cleanGradleProject true

Parameter flags:
  Unknown --flags are passed as pipeline parameters.
  Use --param key=value to set or override explicitly.
"""

_RUN_EPILOG = """\
Examples:
  $ azdo run --pipeline <pipeline_id> --branch develop
  $ azdo run --pipeline <pipeline_id> --poll 10000 --versionCode 123
  $ azdo run --pipeline <pipeline_id> --no-wait --versionCode 123
"""


@dataclass
class CommandContext:
    """Collaborators shared by the command handlers.

    Attributes:
        cwd: Project root.
        reporter: User-facing output.
        prompter: Interactive prompts.
    """

    cwd: Path
    reporter: Reporter
    prompter: Prompter


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class _Parser(argparse.ArgumentParser):
    """``ArgumentParser`` that exits with 1 on usage errors, like any other error."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _add_param_argument(parser: argparse.ArgumentParser, help_text: str) -> None:
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="K=V",
        help=help_text,
    )


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured ``ArgumentParser`` with ``init``, ``build`` and ``run``.
    """
    parser = _Parser(
        prog="azdo",
        description="Azure DevOps CLI helper",
        epilog=_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file.")
    parser.add_argument(
        "--color",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Force colored output on or off.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser(
        "init",
        help=f"Create {CONFIG_FILENAME} (and optionally .env) in the current directory",
        allow_abbrev=False,
    )
    init.add_argument(
        "--write-env",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Write AZDO_PAT into .env.",
    )
    init.add_argument(
        "--interactive",
        action="store_true",
        help="Prompt with defaults from env.",
    )

    build = subparsers.add_parser(
        "build",
        help="Select a pipeline and run it (prompts for parameters by default)",
        epilog=_BUILD_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
    )
    build.add_argument("-p", "--pipeline", help=f"Pipeline id or key from {CONFIG_FILENAME}.")
    build.add_argument("-b", "--branch", help="Override branch name.")
    _add_param_argument(build, "Template parameter override (repeatable).")
    build.add_argument("--poll", help="Polling interval in ms.")
    build.add_argument(
        "--prompt",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Prompt for branch and parameters (--no-prompt uses defaults + flags).",
    )
    build.add_argument(
        "--wait",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Wait for the run to complete.",
    )

    run = subparsers.add_parser(
        "run",
        help="Trigger a pipeline run by id",
        epilog=_RUN_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
    )
    run.add_argument("-p", "--pipeline", required=True, help="Pipeline id.")
    run.add_argument("-b", "--branch", help="Git branch name.")
    _add_param_argument(run, "Template parameter (repeatable).")
    run.add_argument(
        "--wait",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Wait for the run to complete.",
    )
    run.add_argument("--poll", default="7000", help="Polling interval in ms.")
    return parser


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _wait_and_report(
    client: AzdoClient,
    ctx: CommandContext,
    pipeline_id: int,
    run: RunInfo,
    *,
    poll_ms: int,
    done_label: str,
) -> int:
    """Wait for *run* to finish and report its result.

    Returns:
        0 when the run succeeded, else 1.
    """
    ctx.reporter.start("Waiting for completion...")
    completed = monitor_run_sync(
        client,
        pipeline_id,
        run.id,
        poll_ms=poll_ms,
        timeout_seconds=DEFAULT_TIMEOUT_SECONDS,
        on_update=report_state_changes(lambda state: ctx.reporter.info(f"State: {state}")),
    )
    ctx.reporter.success(done_label)
    ctx.reporter.run(completed)
    if not completed.succeeded:
        ctx.reporter.error(f"Result: {completed.result or 'unknown'}")
        return 1
    return 0


def _prompt_branch(ctx: CommandContext, branch: str) -> str:
    """Let the user type a branch or pick one of the local git branches."""
    method = ctx.prompter.select(
        "Choose branch input",
        [("enter", "Enter branch name"), ("select", "Select from git branches")],
    )
    if method == "select":
        branches = list_git_branches(ctx.cwd)
        if branches:
            initial = branch if branch in branches else branches[0]
            picked = ctx.prompter.select(
                "Select a git branch",
                [(name, name) for name in branches],
                initial=initial,
            )
            return picked or branch
        ctx.reporter.warn("No git branches found. Enter a branch name.")

    answer = ctx.prompter.text("Branch name", initial=branch).strip()
    return answer or branch


@dataclass
class DefinitionLookup:
    """Outcome of searching for a pipeline's definition text."""

    content: str | None = None
    label: str | None = None
    repository_type: str | None = None
    error: str | None = None


def find_definition(
    client: AzdoClient,
    ctx: CommandContext,
    selection: PipelineSelection,
    branch: str,
    *,
    interactive: bool,
) -> DefinitionLookup:
    """Find the definition text for *selection*, first source wins.

    Order: the catalog's local path, the service's copy, then the best
    local match by name. Failures at each step only move on to the next.

    Args:
        client: Service client.
        ctx: Command collaborators.
        selection: The selected pipeline.
        branch: Branch the run will use.
        interactive: Ask the user to break ties between local matches.

    Returns:
        What was found, including why the service copy was unavailable.
    """
    lookup = DefinitionLookup()

    if selection.definition_path:
        try:
            content = read_local_definition(ctx.cwd, selection.definition_path)
        except DefinitionUnreadableError as exc:
            logger.info("%s", exc)
        else:
            if content:
                return DefinitionLookup(content=content, label=selection.definition_path)

    try:
        source = client.get_pipeline_yaml(selection.id, branch)
    except (AzdoError, ValidationError) as exc:
        lookup.error = str(exc)
    else:
        lookup.repository_type = source.repository_type
        if source.content:
            lookup.content = source.content
            lookup.label = source.path or "pipeline YAML"
            return lookup

    def _choose(candidates: Sequence[Any]) -> str:
        return ctx.prompter.select(
            "Select pipeline YAML file",
            [(candidate.path, candidate.path) for candidate in candidates],
        )

    ranked = locate_definition(ctx.cwd, selection.key, selection.name)
    local_path = resolve_match(ranked, _choose if interactive else None)
    if local_path:
        try:
            content = read_local_definition(ctx.cwd, local_path)
        except DefinitionUnreadableError as exc:
            logger.info("%s", exc)
        else:
            if content:
                lookup.content = content
                lookup.label = local_path
    return lookup


def _declared_specs(ctx: CommandContext, lookup: DefinitionLookup) -> list[ParameterSpec]:
    """Parse the found definition and explain when there is nothing to prompt for."""
    if lookup.content:
        try:
            specs = parse_parameter_specs(lookup.content)
        except DefinitionUnreadableError as exc:
            ctx.reporter.warn(str(exc))
            return []
        if specs:
            ctx.reporter.info(f"Found {len(specs)} parameters in {lookup.label or 'pipeline YAML'}")
        return specs

    if lookup.repository_type and lookup.repository_type != NATIVE_REPOSITORY_TYPE:
        ctx.reporter.info(f"Skipping parameter prompts (repo type: {lookup.repository_type})")
    elif lookup.error:
        ctx.reporter.warn(f"Could not read pipeline YAML parameters: {lookup.error}")
    else:
        ctx.reporter.info("No pipeline YAML found for parameter prompts.")
    return []


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _validate_org_url(value: str) -> str | None:
    if not value or not value.strip():
        return "Org URL is required"
    if not value.strip().startswith("https://"):
        return "Org URL must start with https://"
    return None


def _validate_required(label: str) -> Validator:
    def _check(value: str) -> str | None:
        return f"{label} is required" if not value or not value.strip() else None

    return _check


def cmd_init(args: argparse.Namespace, ctx: CommandContext) -> int:
    """Generate the catalog from the service's pipeline list."""
    org_url = optional_env("AZDO_ORG_URL")
    project = optional_env("AZDO_PROJECT")
    pat = optional_env("AZDO_PAT") or load_stored_pat()

    if args.interactive:
        org_url = ctx.prompter.text(
            "Azure DevOps org URL",
            initial=org_url,
            placeholder="https://dev.azure.com/your-org",
            validate=_validate_org_url,
        ).strip()
        project = ctx.prompter.text(
            "Project name",
            initial=project,
            validate=_validate_required("Project"),
        ).strip()
        if not ctx.prompter.confirm("Use AZDO_PAT from env?", initial=True):
            pat = ctx.prompter.secret(
                "Personal Access Token (PAT)",
                validate=_validate_required("PAT"),
            ).strip()
    else:
        ctx.reporter.start(f"Generating {CONFIG_FILENAME} from env + Azure DevOps...")

    if not org_url:
        msg = "Missing env AZDO_ORG_URL"
        raise ConfigMissingError(msg)
    if not project:
        msg = "Missing env AZDO_PROJECT"
        raise ConfigMissingError(msg)
    if not pat:
        msg = "Not authenticated. Set AZDO_PAT or run azdo init --interactive"
        raise ConfigMissingError(msg)

    default_branch = default_branch_from_env()
    client = AzdoClient(
        ServiceConfig(org_url=org_url, project=project, pat=pat, default_branch=default_branch)
    )
    pipelines = client.list_pipelines()

    catalog = CatalogConfig(
        org_url=org_url,
        project=project,
        auth=AuthSettings(),
        defaults=CatalogDefaults(
            branch=default_branch,
            poll_ms=parse_poll_ms(os.environ.get("AZDO_POLL_MS")),
        ),
        pipelines=build_pipeline_map(pipelines),
    )
    save_catalog(catalog, ctx.cwd)
    ctx.reporter.success(f"Wrote {CONFIG_FILENAME} ({len(pipelines)} pipelines)")

    if args.write_env:
        upsert_env_var(ctx.cwd, "AZDO_PAT", pat)
        ctx.reporter.success("Updated .env (AZDO_PAT)")
    else:
        ctx.reporter.info("Skipped writing .env")
    return 0


def cmd_build(args: argparse.Namespace, extra_args: Sequence[str], ctx: CommandContext) -> int:
    """Resolve a catalog pipeline's branch and parameters, trigger it, wait."""
    catalog = require_catalog(ctx.cwd)
    service_config = service_config_for_catalog(catalog)
    client = AzdoClient(service_config)

    selection = resolve_pipeline_selection(
        catalog,
        args.pipeline,
        choose=lambda items: ctx.prompter.select(
            "Select a pipeline",
            [(key, describe_catalog_item((key, entry))) for key, entry in items],
        ),
    )
    catalog_defaults = catalog.defaults or CatalogDefaults()
    branch = (
        args.branch
        or selection.branch
        or catalog_defaults.branch
        or service_config.default_branch
    )
    if not args.branch and args.prompt:
        branch = _prompt_branch(ctx, branch)

    poll_source: Any = args.poll
    if poll_source is None:
        poll_source = catalog_defaults.poll_ms
    if poll_source is None:
        poll_source = os.environ.get("AZDO_POLL_MS")
    poll_ms = parse_poll_ms(poll_source)

    lookup = find_definition(client, ctx, selection, branch, interactive=args.prompt)
    specs = _declared_specs(ctx, lookup)
    parameters = resolve_parameters(
        specs,
        prompter=ctx.prompter if args.prompt else None,
        overrides=args.param,
        extra_args=extra_args,
    )

    ctx.reporter.start("Triggering pipeline...")
    run = client.trigger_run(selection.id, branch, parameters)
    ctx.reporter.success("Build started")
    ctx.reporter.run(run)
    ctx.reporter.info("You can quit now; the build will continue in Azure DevOps.")

    if not args.wait:
        return 0
    return _wait_and_report(
        client, ctx, selection.id, run, poll_ms=poll_ms, done_label="Build completed"
    )


def cmd_run(args: argparse.Namespace, extra_args: Sequence[str], ctx: CommandContext) -> int:
    """Trigger a pipeline by id with explicit parameters, optionally wait."""
    try:
        pipeline_id = int(args.pipeline)
    except ValueError as exc:
        msg = "--pipeline must be a number"
        raise InvalidInputError(msg) from exc
    poll_ms = parse_poll_ms_strict(args.poll) if args.wait else 0

    service_config = service_config_from_env()
    client = AzdoClient(service_config)
    branch = args.branch or service_config.default_branch
    parameters = resolve_parameters([], overrides=args.param, extra_args=extra_args)

    ctx.reporter.start("Triggering pipeline...")
    run = client.trigger_run(pipeline_id, branch, parameters)
    ctx.reporter.success("Pipeline triggered")
    ctx.reporter.run(run)

    if not args.wait:
        return 0
    return _wait_and_report(
        client, ctx, pipeline_id, run, poll_ms=poll_ms, done_label="Run completed"
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the azdo CLI application.

    Loads ``.env`` files, parses arguments (keeping unrecognised flags
    for ``build``/``run``), configures logging and dispatches to the
    command handler.

    Args:
        argv: Arguments without the program name; ``sys.argv[1:]`` when omitted.

    Returns:
        Exit code: 0 on success, 1 on error or an unsuccessful run.
    """
    cwd = Path.cwd()
    load_env_files(cwd)

    parser = _build_parser()
    try:
        args, extra_args = parser.parse_known_args(argv)
        if args.command == "init" and extra_args:
            parser.error(f"unrecognized arguments: {' '.join(extra_args)}")
    except SystemExit as exc:
        # --help exits 0; usage errors exit 1
        return exc.code if isinstance(exc.code, int) else 1

    settings = apply_env_overrides(
        CliSettings(
            log_level="DEBUG" if args.verbose else CliSettings().log_level,
            log_file=args.log_file,
            color=args.color,
        )
    )
    configure_logging(settings)

    reporter = Reporter(use_color=should_use_color(sys.stdout, forced=settings.color))
    ctx = CommandContext(cwd=cwd, reporter=reporter, prompter=ConsolePrompter())

    try:
        if args.command == "init":
            return cmd_init(args, ctx)
        if args.command == "build":
            return cmd_build(args, extra_args, ctx)
        return cmd_run(args, extra_args, ctx)
    except PromptCancelledError:
        reporter.info("Canceled")
        return 0
    except AzdoError as exc:
        reporter.error(f"Error: {exc}")
        return 1
    except Exception as exc:
        logger.debug("Unhandled error", exc_info=True)
        reporter.error(f"Error: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
