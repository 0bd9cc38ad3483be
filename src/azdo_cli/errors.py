"""Exception hierarchy for the azdo pipeline helper.

Library code raises these; only ``azdo_cli.cli`` turns them into exit
codes and user-facing messages.
"""

from __future__ import annotations


class AzdoError(Exception):
    """Base class for every error the CLI reports to the user."""


class ConfigMissingError(AzdoError):
    """Required configuration (catalog, org/project, token) is missing."""


class UnknownPipelineError(AzdoError):
    """A pipeline reference matches nothing in the catalog."""


class DefinitionUnreadableError(AzdoError):
    """A definition file could not be read or parsed.

    Never fatal: callers fall back to the next definition source.
    """


class ServiceError(AzdoError):
    """The pipeline service returned a non-success response.

    Attributes:
        status_code: HTTP status, or ``None`` when the request never
            produced a response.
        body: Response body text (or the transport error message).
    """

    def __init__(self, status_code: int | None, body: str) -> None:
        """Initialize with the response status and body.

        Args:
            status_code: HTTP status code, if any.
            body: Response body text.
        """
        if status_code is None:
            message = f"AzDO API request failed: {body}"
        else:
            message = f"AzDO API error {status_code}: {body}"
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RunTimeoutError(AzdoError):
    """A run did not complete before the monitor's deadline.

    Attributes:
        run_id: The run being monitored.
        elapsed_seconds: Wall-clock seconds spent waiting.
    """

    def __init__(self, run_id: int, elapsed_seconds: float) -> None:
        """Initialize with the run id and the time spent waiting."""
        super().__init__("Timed out waiting for pipeline run to complete")
        self.run_id = run_id
        self.elapsed_seconds = elapsed_seconds


class InvalidInputError(AzdoError):
    """A command-line value is malformed."""


class PromptCancelledError(AzdoError):
    """The user cancelled an interactive prompt."""
