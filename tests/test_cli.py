"""Tests for the ``azdo`` command-line entry point.

Runs ``main()`` end to end inside a temporary project directory with
``AzdoClient``, ``ConsolePrompter`` and ``monitor_run_sync`` patched at
their ``azdo_cli.cli`` import sites.
"""

from __future__ import annotations

from collections.abc import Iterator
import json
import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

from azdo_cli.cli import CommandContext, _build_parser, find_definition, main
from azdo_cli.config import save_catalog
from azdo_cli.errors import PromptCancelledError, ServiceError
from azdo_cli.models import DefinitionSource, PipelineInfo, PipelineSelection
from azdo_cli.reporting import Reporter
from azdo_cli.service import AzdoClient
import pytest

from tests.conftest import make_catalog, make_run, make_service_config

_ANDROID_YAML = (
    "parameters:\n"
    "  - name: versionCode\n"
    "    type: number\n"
    "    default: 41\n"
    "  - name: clean\n"
    "    type: boolean\n"
    "    default: false\n"
)


@pytest.fixture()
def project(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    clean_azdo_logger: logging.Logger,
) -> Path:
    """A project directory as cwd with service variables set."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("AZDO_ORG_URL", "https://dev.azure.com/acme")
    monkeypatch.setenv("AZDO_PROJECT", "Mobile")
    monkeypatch.setenv("AZDO_PAT", "secret-token")
    for name in ("AZDO_DEFAULT_BRANCH", "AZDO_POLL_MS", "AZDO_LOG_LEVEL", "AZDO_LOG_FILE"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture()
def with_catalog(project: Path) -> Path:
    """The project plus a catalog and the android definition file."""
    save_catalog(make_catalog(), project)
    (project / "ci").mkdir()
    (project / "ci" / "android-staging.yml").write_text(_ANDROID_YAML, encoding="utf-8")
    return project


@pytest.fixture()
def mock_client() -> Iterator[MagicMock]:
    """Patch the service client class; yields the instance."""
    with patch("azdo_cli.cli.AzdoClient") as client_cls:
        client = client_cls.return_value
        client.trigger_run.return_value = make_run()
        client.get_pipeline_yaml.return_value = DefinitionSource()
        yield client


@pytest.fixture()
def console(mock_prompter: MagicMock) -> Iterator[MagicMock]:
    """Patch the console prompter; yields the fake prompter."""
    with patch("azdo_cli.cli.ConsolePrompter", return_value=mock_prompter):
        yield mock_prompter


# ===========================================================================
# Parser
# ===========================================================================


@pytest.mark.unit
class TestParser:
    """Argument surface."""

    def test_build_defaults(self) -> None:
        """Prompting and waiting are on by default."""
        args = _build_parser().parse_args(["build"])
        assert args.prompt is True
        assert args.wait is True
        assert args.param == []

    def test_unknown_flags_kept_in_order(self) -> None:
        """Unrecognised flags survive for parameter forwarding."""
        args, extra = _build_parser().parse_known_args(
            ["run", "-p", "12", "--versionCode", "123", "--no-clean", "--param", "a=1"]
        )
        assert args.pipeline == "12"
        assert args.param == ["a=1"]
        assert extra == ["--versionCode", "123", "--no-clean"]

    def test_init_rejects_extra_arguments(
        self, project: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """``init`` has no forwarded flags."""
        assert main(["init", "--bogus"]) == 1
        assert "unrecognized arguments: --bogus" in capsys.readouterr().err

    @pytest.mark.parametrize("argv", [["run"], ["deploy"], []])
    def test_usage_errors_exit_one(
        self, project: Path, argv: list[str], capsys: pytest.CaptureFixture[str]
    ) -> None:
        """A missing required option or an unknown command is an ordinary error."""
        assert main(argv) == 1
        assert "usage: azdo" in capsys.readouterr().err

    def test_help_exits_zero(self, project: Path) -> None:
        """``--help`` is not an error."""
        assert main(["--help"]) == 0


# ===========================================================================
# run
# ===========================================================================


@pytest.mark.unit
class TestRunCommand:
    """``azdo run``."""

    def test_triggers_with_flag_parameters(
        self, project: Path, mock_client: MagicMock, console: MagicMock
    ) -> None:
        """Overrides and forwarded flags become template parameters."""
        code = main(
            ["run", "--pipeline", "12", "--no-wait", "--param", "flavor=qa", "--versionCode", "123"]
        )

        assert code == 0
        mock_client.trigger_run.assert_called_once_with(
            12, "develop", {"flavor": "qa", "versionCode": 123}
        )

    def test_branch_option(self, project: Path, mock_client: MagicMock, console: MagicMock) -> None:
        """``--branch`` replaces the default branch."""
        main(["run", "-p", "12", "-b", "release/1.0", "--no-wait"])
        assert mock_client.trigger_run.call_args.args[1] == "release/1.0"

    def test_non_numeric_pipeline(
        self,
        project: Path,
        mock_client: MagicMock,
        console: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A pipeline key is not accepted by ``run``."""
        assert main(["run", "--pipeline", "android"]) == 1
        assert "--pipeline must be a number" in capsys.readouterr().err
        mock_client.trigger_run.assert_not_called()

    def test_invalid_poll_rejected_before_trigger(
        self,
        project: Path,
        mock_client: MagicMock,
        console: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A bad ``--poll`` fails without queueing a run."""
        assert main(["run", "-p", "12", "--poll", "0"]) == 1
        assert "--poll must be a positive number" in capsys.readouterr().err
        mock_client.trigger_run.assert_not_called()

    def test_waits_and_succeeds(
        self, project: Path, mock_client: MagicMock, console: MagicMock
    ) -> None:
        """A succeeded run exits 0 after monitoring with the given poll."""
        done = make_run(state="completed", result="succeeded")
        with patch("azdo_cli.cli.monitor_run_sync", return_value=done) as monitor:
            assert main(["run", "-p", "12", "--poll", "10000"]) == 0
        assert monitor.call_args.args[1:] == (12, 501)
        assert monitor.call_args.kwargs["poll_ms"] == 10000
        assert monitor.call_args.kwargs["timeout_seconds"] == 3600

    def test_failed_run_exits_one(
        self,
        project: Path,
        mock_client: MagicMock,
        console: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A terminal result other than succeeded is exit code 1."""
        done = make_run(state="completed", result="failed")
        with patch("azdo_cli.cli.monitor_run_sync", return_value=done):
            assert main(["run", "-p", "12"]) == 1
        assert "Result: failed" in capsys.readouterr().err

    def test_missing_env(
        self,
        project: Path,
        monkeypatch: pytest.MonkeyPatch,
        mock_client: MagicMock,
        console: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Without AZDO_ORG_URL the command fails."""
        monkeypatch.delenv("AZDO_ORG_URL")
        assert main(["run", "-p", "12", "--no-wait"]) == 1
        assert "Missing env AZDO_ORG_URL" in capsys.readouterr().err

    def test_service_error_reported(
        self,
        project: Path,
        mock_client: MagicMock,
        console: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Service failures are reported with their status."""
        mock_client.trigger_run.side_effect = ServiceError(403, "Forbidden")
        assert main(["run", "-p", "12", "--no-wait"]) == 1
        assert "AzDO API error 403: Forbidden" in capsys.readouterr().err


# ===========================================================================
# build
# ===========================================================================


@pytest.mark.unit
class TestBuildCommand:
    """``azdo build``."""

    def test_missing_catalog(
        self,
        project: Path,
        mock_client: MagicMock,
        console: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Without azdo.config.json the user is sent to ``azdo init``."""
        assert main(["build", "--no-prompt"]) == 1
        assert "Run azdo init first" in capsys.readouterr().err

    def test_no_prompt_uses_defaults_and_flags(
        self, with_catalog: Path, mock_client: MagicMock, console: MagicMock
    ) -> None:
        """Declared defaults are the base; forwarded flags win."""
        code = main(["build", "-p", "android_staging", "--no-prompt", "--no-wait", "--clean"])

        assert code == 0
        mock_client.trigger_run.assert_called_once_with(
            12, "release", {"versionCode": 41, "clean": True}
        )
        mock_client.get_pipeline_yaml.assert_not_called()
        console.select.assert_not_called()

    def test_prompts_for_branch_and_parameters(
        self, with_catalog: Path, mock_client: MagicMock, console: MagicMock
    ) -> None:
        """Interactive answers (here: accept every default) feed the run."""
        assert main(["build", "--pipeline", "12", "--no-wait"]) == 0

        mock_client.trigger_run.assert_called_once_with(
            12, "release", {"versionCode": 41, "clean": False}
        )
        console.confirm.assert_called_once()
        assert console.text.call_args_list[0].kwargs["initial"] == "release"

    def test_remote_definition_used_without_local_path(
        self, with_catalog: Path, mock_client: MagicMock, console: MagicMock
    ) -> None:
        """The service copy is read when the catalog has no path."""
        mock_client.get_pipeline_yaml.return_value = DefinitionSource(
            content="parameters:\n  flavor: qa\n  track: beta\n",
            path="/ios.yml",
            repository_type="azureReposGit",
        )

        code = main(
            [
                "build", "-p", "ios", "-b", "main",
                "--no-prompt", "--no-wait", "--param", "flavor=prod",
            ]
        )

        assert code == 0
        mock_client.get_pipeline_yaml.assert_called_once_with(34, "main")
        mock_client.trigger_run.assert_called_once_with(
            34, "main", {"flavor": "prod", "track": "beta"}
        )

    def test_remote_error_falls_back_to_locator(
        self, with_catalog: Path, mock_client: MagicMock, console: MagicMock
    ) -> None:
        """A failing remote lookup degrades to the local heuristic."""
        save_catalog(
            make_catalog(pipelines={"android_staging": {"id": 12, "name": "Android Staging"}}),
            with_catalog,
        )
        mock_client.get_pipeline_yaml.side_effect = ServiceError(404, "gone")

        code = main(["build", "-p", "android_staging", "--no-prompt", "--no-wait"])

        assert code == 0
        mock_client.trigger_run.assert_called_once_with(
            12, "develop", {"versionCode": 41, "clean": False}
        )

    def test_no_definition_found(
        self,
        project: Path,
        mock_client: MagicMock,
        console: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """With nothing to read the run goes ahead with explicit parameters only."""
        save_catalog(make_catalog(), project)

        code = main(["build", "-p", "ios", "--no-prompt", "--no-wait", "--param", "a=1"])

        assert code == 0
        assert "No pipeline YAML found" in capsys.readouterr().out
        mock_client.trigger_run.assert_called_once_with(34, "develop", {"a": 1})

    def test_unknown_pipeline_key(
        self,
        with_catalog: Path,
        mock_client: MagicMock,
        console: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Keys outside the catalog are fatal."""
        assert main(["build", "-p", "nope", "--no-prompt"]) == 1
        assert 'Unknown pipeline "nope"' in capsys.readouterr().err

    def test_cancel_is_clean_exit(
        self,
        with_catalog: Path,
        mock_client: MagicMock,
        console: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Cancelling a prompt exits 0 without triggering."""
        console.select.side_effect = PromptCancelledError("Canceled")

        assert main(["build"]) == 0

        assert "Canceled" in capsys.readouterr().out
        mock_client.trigger_run.assert_not_called()


# ===========================================================================
# Definition lookup
# ===========================================================================


def _json_response(payload: dict[str, object]) -> MagicMock:
    response = MagicMock(ok=True, status_code=200)
    response.json.return_value = payload
    return response


@pytest.mark.unit
class TestFindDefinition:
    """Source order and failure handling in ``find_definition``."""

    def test_sign_in_page_falls_back_to_local_file(
        self, project: Path, mock_prompter: MagicMock
    ) -> None:
        """A non-JSON 2xx answer from the items call does not abort the lookup."""
        (project / "azure-pipelines.yml").write_text(_ANDROID_YAML, encoding="utf-8")
        definition = _json_response(
            {
                "id": 12,
                "name": "Android Staging",
                "configuration": {
                    "type": "yaml",
                    "path": "/ci/android.yml",
                    "repository": {"id": "repo-1", "type": "azureReposGit"},
                },
            }
        )
        sign_in = MagicMock(ok=True, status_code=203, text="<html>sign in</html>")
        sign_in.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
        session = MagicMock()
        session.request.side_effect = [definition, sign_in]
        client = AzdoClient(make_service_config(), session=session)
        ctx = CommandContext(cwd=project, reporter=Reporter(), prompter=mock_prompter)
        selection = PipelineSelection(id=12, key="android_staging", name="Android Staging")

        lookup = find_definition(client, ctx, selection, "develop", interactive=False)

        assert lookup.content == _ANDROID_YAML
        assert lookup.label == "azure-pipelines.yml"
        assert lookup.error is not None and "203" in lookup.error
        assert session.request.call_count == 2


# ===========================================================================
# init
# ===========================================================================


@pytest.mark.unit
class TestInitCommand:
    """``azdo init``."""

    def test_writes_catalog_and_env(
        self, project: Path, mock_client: MagicMock, console: MagicMock
    ) -> None:
        """Remote pipelines are keyed by slug; the token goes into .env."""
        mock_client.list_pipelines.return_value = [
            PipelineInfo(id=1, name="Android Staging"),
            PipelineInfo(id=2, name="android-staging"),
        ]

        assert main(["init"]) == 0

        document = json.loads((project / "azdo.config.json").read_text(encoding="utf-8"))
        assert document == {
            "orgUrl": "https://dev.azure.com/acme",
            "project": "Mobile",
            "auth": {"patEnv": "AZDO_PAT"},
            "defaults": {"branch": "develop", "pollMs": 7000},
            "pipelines": {
                "android_staging": {"id": 1, "name": "Android Staging"},
                "android_staging_2": {"id": 2, "name": "android-staging"},
            },
        }
        assert (project / ".env").read_text(encoding="utf-8") == "AZDO_PAT=secret-token\n"

    def test_no_write_env(self, project: Path, mock_client: MagicMock, console: MagicMock) -> None:
        """``--no-write-env`` leaves .env alone."""
        mock_client.list_pipelines.return_value = []
        assert main(["init", "--no-write-env"]) == 0
        assert not (project / ".env").exists()

    def test_interactive_token_prompt(
        self, project: Path, mock_client: MagicMock, console: MagicMock
    ) -> None:
        """Declining the env token asks for one with hidden input."""
        mock_client.list_pipelines.return_value = []
        console.text.side_effect = ["https://dev.azure.com/other", "Other"]
        console.confirm.side_effect = None
        console.confirm.return_value = False

        assert main(["init", "--interactive", "--no-write-env"]) == 0

        console.secret.assert_called_once()
        document = json.loads((project / "azdo.config.json").read_text(encoding="utf-8"))
        assert document["orgUrl"] == "https://dev.azure.com/other"
        assert document["project"] == "Other"
