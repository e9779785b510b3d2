"""
Local model CLI backend -- the primary TextGenerator backend.

Runs a local model command (``claude -p`` by default) as an asyncio subprocess:
the system prompt goes in by flag and the prompt body on stdin. A non-zero exit
or a missing executable raises ServiceError. The facade's deadline cancels the
call; the child process is killed on cancellation.
"""

import asyncio
import logging
import os
import shutil

from ..errors import ServiceError
from .client import CacheablePrompt

logger = logging.getLogger(__name__)


class CliBackend:
    """Text generation through a local model CLI."""

    def __init__(
        self,
        command: str = "claude",
        args: list[str] | None = None,
        system_flag: str = "--append-system-prompt",
        env: dict[str, str] | None = None,
    ):
        self.name = f"cli:{command}"
        self._command = command
        self._args = list(args) if args is not None else ["-p"]
        self._system_flag = system_flag
        self._env = env or {}
        self._executable = shutil.which(command)
        if self._executable is None:
            logger.warning(f"[CliBackend] '{command}' not found on PATH -- backend unavailable")

    @property
    def available(self) -> bool:
        return self._executable is not None

    def build_command(self, prompt: CacheablePrompt) -> list[str]:
        cmd = [self._executable or self._command, *self._args]
        if prompt.system and self._system_flag:
            cmd.extend([self._system_flag, prompt.system])
        return cmd

    async def generate(self, prompt: CacheablePrompt) -> str:
        if not self.available:
            raise ServiceError("executable not found", backend=self.name)

        run_env = os.environ.copy()
        run_env.update({str(k): str(v) for k, v in self._env.items()})

        proc = await asyncio.create_subprocess_exec(
            *self.build_command(prompt),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=run_env,
        )
        try:
            stdout, stderr = await proc.communicate(prompt.body().encode("utf-8"))
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        if proc.returncode != 0:
            detail = (stderr or b"").decode("utf-8", errors="replace").strip()[:500]
            raise ServiceError(f"exit {proc.returncode}: {detail}", backend=self.name)

        return (stdout or b"").decode("utf-8", errors="replace").strip()
