"""
Helper Transport — one helper process per request.

The privileged helper is an executable that takes a verb (plus arguments)
and prints a single JSON object on stdout. Each request spawns its own
process and the process is always killed and reaped before the request
returns, whether it completed, raised, or was abandoned on timeout. Output
arriving after the timeout is therefore discarded with the process.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Protocol, Tuple

import structlog

log = structlog.get_logger()


class TransportError(Exception):
    """Raised when the helper could not be reached or answered garbage."""
    pass


class HelperTransport(Protocol):
    """Protocol for helper transports — pluggable for tests."""

    async def request(self, argv: List[str], timeout: float) -> dict: ...


@asynccontextmanager
async def spawn(argv: List[str]) -> AsyncIterator[asyncio.subprocess.Process]:
    """Start ``argv`` and guarantee the process is gone on exit."""
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        yield proc
    finally:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()


async def run_process(argv: List[str], timeout: float) -> Tuple[str, str]:
    """
    Run ``argv`` to completion and return decoded (stdout, stderr).

    Raises asyncio.TimeoutError when it does not finish in time and OSError
    when it cannot be executed.
    """
    async with spawn(argv) as proc:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    return stdout.decode(errors="replace"), stderr.decode(errors="replace")


class SubprocessTransport:
    """Runs the helper executable and decodes its JSON reply."""

    async def request(self, argv: List[str], timeout: float) -> dict:
        """
        Run one helper request.

        Raises asyncio.TimeoutError, OSError, or TransportError when the
        output is not a JSON object.
        """
        stdout, stderr = await run_process(argv, timeout)
        if stderr:
            log.debug("helper_stderr", verb=argv[1] if len(argv) > 1 else None, stderr=stderr[:500])
        return decode_reply(stdout)


def decode_reply(text: str) -> dict:
    """Decode the last non-empty stdout line as a JSON object."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        raise TransportError("helper produced no output")
    try:
        reply = json.loads(lines[-1])
    except json.JSONDecodeError as e:
        raise TransportError(f"helper output is not JSON: {e}") from e
    if not isinstance(reply, dict):
        raise TransportError("helper output is not a JSON object")
    return reply
