"""Shell command execution for the build and deploy stages.

Each configured command runs as a single shell invocation inside the
deployment directory with stderr merged into stdout. Output is collected
incrementally so that whatever a failing or timed-out command printed is
still available for the deployment log.

Example usage:
    >>> runner = CommandRunner()
    >>> output = await runner.run(
    ...     "npm ci && npm run build",
    ...     cwd=Path("/tmp/deployments/abc/main"),
    ...     env_overrides={"NODE_ENV": "production"},
    ...     stage="build",
    ...     timeout_seconds=1800,
    ... )
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
from collections.abc import Mapping
from pathlib import Path

from deploybot.logging import get_logger, mask_credentials
from deploybot.pipeline.errors import CommandFailedError

_READ_CHUNK_BYTES = 64 * 1024


class CommandRunner:
    """Runs build and deploy commands through the system shell.

    Attributes:
        logger: Structured logger instance
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)

    async def run(
        self,
        command: str | None,
        cwd: Path,
        env_overrides: Mapping[str, str] | None = None,
        stage: str = "build",
        timeout_seconds: int | float | None = None,
    ) -> str:
        """Run ``command`` and return its combined output.

        Args:
            command: Shell command; None or blank means nothing to run
            cwd: Working directory
            env_overrides: Variables layered over the current environment
            stage: "build" or "deploy", used in errors and logs
            timeout_seconds: Kill the command after this many seconds

        Returns:
            Combined stdout and stderr ("" when no command is configured)

        Raises:
            CommandFailedError: Non-zero exit status or timeout
        """
        if command is None or not command.strip():
            self.logger.debug("command_skipped", stage=stage)
            return ""

        env = {**os.environ, **(env_overrides or {})}
        self.logger.info(
            "command_started",
            stage=stage,
            command=mask_credentials(command),
            cwd=str(cwd),
            timeout_seconds=timeout_seconds,
        )

        # New session so a timeout can kill the whole process group
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd),
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )

        chunks: list[bytes] = []

        async def _drain() -> None:
            assert proc.stdout is not None
            while True:
                chunk = await proc.stdout.read(_READ_CHUNK_BYTES)
                if not chunk:
                    break
                chunks.append(chunk)

        try:
            await asyncio.wait_for(
                asyncio.gather(_drain(), proc.wait()),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._kill(proc)
            await proc.wait()
            output = b"".join(chunks).decode("utf-8", errors="replace")
            self.logger.error(
                "command_timed_out",
                stage=stage,
                timeout_seconds=timeout_seconds,
                output_chars=len(output),
            )
            raise CommandFailedError(
                stage,
                None,
                output,
                timed_out=True,
                timeout_seconds=timeout_seconds,
            ) from None
        except asyncio.CancelledError:
            self._kill(proc)
            raise

        output = b"".join(chunks).decode("utf-8", errors="replace")
        exit_code = proc.returncode

        if exit_code != 0:
            self.logger.error(
                "command_failed",
                stage=stage,
                exit_code=exit_code,
                output_tail=output[-500:],
            )
            raise CommandFailedError(stage, exit_code, output)

        self.logger.info(
            "command_completed",
            stage=stage,
            exit_code=exit_code,
            output_chars=len(output),
        )
        return output

    @staticmethod
    def _kill(proc: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError, PermissionError):
            os.killpg(proc.pid, signal.SIGKILL)
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
