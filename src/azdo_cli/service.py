"""Azure DevOps pipelines REST client.

Thin wrapper over ``requests`` covering the five calls the CLI needs:
list pipelines, get a definition, fetch a definition's YAML source,
trigger a run and get a run. Every call is a single attempt; any
non-2xx response raises ``ServiceError`` with the status and body.
"""

from __future__ import annotations

import base64
import logging
from typing import Any
from urllib.parse import quote

import requests
from requests import Response, Session
from requests.exceptions import RequestException

from azdo_cli.errors import ServiceError
from azdo_cli.models import (
    DefinitionSource,
    PipelineDefinition,
    PipelineInfo,
    RunInfo,
    ServiceConfig,
)

logger = logging.getLogger(__name__)

API_VERSION = "7.1-preview.1"
NATIVE_REPOSITORY_TYPE = "azureReposGit"
REQUEST_TIMEOUT_SECONDS = 30


def auth_header(pat: str) -> str:
    """HTTP Basic credentials for a personal access token (empty user)."""
    token = base64.b64encode(f":{pat}".encode()).decode("ascii")
    return f"Basic {token}"


def to_ref_name(branch: str) -> str:
    """Qualify a short branch name as ``refs/heads/<branch>``."""
    return branch if branch.startswith("refs/") else f"refs/heads/{branch}"


def strip_ref_prefix(branch: str | None) -> str | None:
    """Drop a leading ``refs/heads/`` from *branch*."""
    if not branch:
        return None
    return branch.removeprefix("refs/heads/")


def _run_from_payload(payload: dict[str, Any]) -> RunInfo:
    links = payload.get("_links") or {}
    web = links.get("web") or {}
    return RunInfo(
        id=payload["id"],
        state=payload.get("state"),
        result=payload.get("result"),
        url=web.get("href") or payload.get("url"),
    )


class AzdoClient:
    """Client for one organization/project pair.

    Attributes:
        config: Connection settings.
        session: ``requests`` session shared by all calls.
    """

    def __init__(self, config: ServiceConfig, session: Session | None = None) -> None:
        """Initialize with connection settings and an optional session.

        Args:
            config: Organization URL, project and token.
            session: Session to reuse; a new one is created when omitted.
        """
        self.config = config
        self.session = session or requests.Session()

    @property
    def base_url(self) -> str:
        """Project-scoped API root."""
        org_url = self.config.org_url.rstrip("/")
        return f"{org_url}/{quote(self.config.project, safe='')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}/{path}"
        query = {"api-version": API_VERSION, **(params or {})}
        logger.debug("%s %s %s", method, url, query)
        try:
            response: Response = self.session.request(
                method,
                url,
                params=query,
                json=json_body,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": auth_header(self.config.pat),
                },
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except RequestException as exc:
            raise ServiceError(None, str(exc)) from exc

        if not response.ok:
            raise ServiceError(response.status_code, response.text)
        try:
            return response.json()
        except ValueError as exc:
            # e.g. a 203 sign-in page for a rejected token
            raise ServiceError(response.status_code, response.text) from exc

    def list_pipelines(self) -> list[PipelineInfo]:
        """List every pipeline in the project."""
        payload = self._request("GET", "_apis/pipelines")
        return [
            PipelineInfo(id=item["id"], name=item["name"], folder=item.get("folder"))
            for item in payload.get("value") or []
        ]

    def get_pipeline_definition(self, pipeline_id: int) -> PipelineDefinition:
        """Fetch a pipeline's definition, including its configuration."""
        payload = self._request("GET", f"_apis/pipelines/{pipeline_id}")
        return PipelineDefinition.model_validate(payload)

    def get_pipeline_yaml(self, pipeline_id: int, branch: str | None = None) -> DefinitionSource:
        """Fetch the YAML source of a pipeline when the service can provide it.

        Content is only fetched for YAML pipelines stored in the service's
        own git repositories; otherwise the returned source carries the
        repository type (and path, when known) with no content.

        Args:
            pipeline_id: Pipeline to look up.
            branch: Branch to read from; the repository default when omitted.

        Returns:
            The definition source.
        """
        definition = self.get_pipeline_definition(pipeline_id)
        cfg = definition.configuration
        if cfg is None or cfg.type != "yaml":
            return DefinitionSource(repository_type=cfg.type if cfg else None)

        repo = cfg.repository
        if repo is None or not repo.id or repo.type != NATIVE_REPOSITORY_TYPE or not cfg.path:
            return DefinitionSource(path=cfg.path, repository_type=repo.type if repo else None)

        params = {
            "path": cfg.path,
            "includeContent": "true",
            "resolveLfs": "true",
        }
        branch_name = strip_ref_prefix(branch) or strip_ref_prefix(repo.default_branch)
        if branch_name:
            params["versionDescriptor.version"] = branch_name
            params["versionDescriptor.versionType"] = "branch"

        payload = self._request("GET", f"_apis/git/repositories/{repo.id}/items", params=params)
        return DefinitionSource(
            content=payload.get("content"),
            path=cfg.path,
            repository_type=repo.type,
        )

    def trigger_run(self, pipeline_id: int, branch: str, parameters: dict[str, Any]) -> RunInfo:
        """Queue a run of *pipeline_id* on *branch* with template parameters."""
        body = {
            "resources": {"repositories": {"self": {"refName": to_ref_name(branch)}}},
            "templateParameters": parameters,
        }
        payload = self._request("POST", f"_apis/pipelines/{pipeline_id}/runs", json_body=body)
        run = _run_from_payload(payload)
        logger.info("Triggered run %d of pipeline %d on %s", run.id, pipeline_id, branch)
        return run

    def get_run(self, pipeline_id: int, run_id: int) -> RunInfo:
        """Fetch the current state of a run."""
        payload = self._request("GET", f"_apis/pipelines/{pipeline_id}/runs/{run_id}")
        return _run_from_payload(payload)
