"""Run completion monitor.

Polls the pipeline service for a triggered run until the run reports
``completed`` or a deadline passes. The loop keeps no state of its own
beyond the start time: every iteration queries the run, hands the
snapshot to an optional observer, and then either returns, times out,
or sleeps for the poll interval.

The elapsed-time check runs after each query, so the first query is
always attempted, even with a zero timeout. Query failures are not
caught here and abort the wait immediately; there is no retry, backoff
or jitter at this layer.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging
import time
from typing import TYPE_CHECKING

from azdo_cli.errors import RunTimeoutError

if TYPE_CHECKING:
    from azdo_cli.models import RunInfo
    from azdo_cli.service import AzdoClient

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS: float = 60 * 60
DEFAULT_POLL_MS: int = 7000

RunFetcher = Callable[[], Awaitable["RunInfo"]]
RunObserver = Callable[["RunInfo"], None]


async def wait_for_completion(
    fetch_run: RunFetcher,
    *,
    poll_interval_seconds: float,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    on_update: RunObserver | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> RunInfo:
    """Poll *fetch_run* until the run completes.

    Args:
        fetch_run: Coroutine function returning the latest run snapshot.
        poll_interval_seconds: Delay between queries.
        timeout_seconds: Give up once this much time has elapsed after a
            non-terminal query.
        on_update: Called with every snapshot, before the state is checked.
        sleep: Suspension used between queries.
        clock: Monotonic time source in seconds.

    Returns:
        The first snapshot whose state is ``completed``.

    Raises:
        RunTimeoutError: If the deadline passes before completion.
    """
    started = clock()
    polls = 0
    while True:
        run = await fetch_run()
        polls += 1
        if on_update is not None:
            on_update(run)
        if run.is_completed:
            logger.debug("Run %d completed after %d polls: %s", run.id, polls, run.result)
            return run

        elapsed = clock() - started
        if elapsed > timeout_seconds:
            logger.warning(
                "Run %d still %s after %.1fs (%d polls); giving up",
                run.id,
                run.state,
                elapsed,
                polls,
            )
            raise RunTimeoutError(run.id, elapsed)

        await sleep(poll_interval_seconds)


def report_state_changes(emit: Callable[[str], None]) -> RunObserver:
    """Build an observer that calls *emit* once per distinct run state.

    Args:
        emit: Receives the new state name.

    Returns:
        An ``on_update`` callback for ``wait_for_completion``.
    """
    last_state: str | None = None

    def _observe(run: RunInfo) -> None:
        nonlocal last_state
        if run.state != last_state:
            last_state = run.state
            if last_state:
                emit(last_state)

    return _observe


async def monitor_run(
    client: AzdoClient,
    pipeline_id: int,
    run_id: int,
    *,
    poll_ms: int = DEFAULT_POLL_MS,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    on_update: RunObserver | None = None,
) -> RunInfo:
    """Wait for a run using the blocking service client.

    Each query runs in a worker thread so the event loop stays free
    during the HTTP round trip.

    Args:
        client: Service client.
        pipeline_id: Pipeline the run belongs to.
        run_id: Run to wait for.
        poll_ms: Poll interval in milliseconds.
        timeout_seconds: Overall deadline.
        on_update: Observer for each snapshot.

    Returns:
        The completed run.
    """

    async def _fetch() -> RunInfo:
        return await asyncio.to_thread(client.get_run, pipeline_id, run_id)

    return await wait_for_completion(
        _fetch,
        poll_interval_seconds=poll_ms / 1000,
        timeout_seconds=timeout_seconds,
        on_update=on_update,
    )


def monitor_run_sync(
    client: AzdoClient,
    pipeline_id: int,
    run_id: int,
    *,
    poll_ms: int = DEFAULT_POLL_MS,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    on_update: RunObserver | None = None,
) -> RunInfo:
    """Synchronous wrapper for ``monitor_run()`` via ``asyncio.run()``."""
    return asyncio.run(
        monitor_run(
            client,
            pipeline_id,
            run_id,
            poll_ms=poll_ms,
            timeout_seconds=timeout_seconds,
            on_update=on_update,
        )
    )
