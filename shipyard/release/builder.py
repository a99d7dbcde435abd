"""Local release build."""

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path

from shipyard.core.exceptions import BuildError
from shipyard.utils.logging import get_logger


@dataclass
class BuildResult:
    """Output of a successful build."""

    output_dir: Path
    stdout: str
    stderr: str
    duration_ms: int


class ReleaseBuilder:
    """Runs the project's build command in the source tree."""

    def __init__(
        self,
        source_dir: Path | str,
        command: str = "npm run build",
        output_dir: str = "dist",
        timeout: int = 900,
    ):
        self.source_dir = Path(source_dir)
        self.command = command
        self.output_dir = self.source_dir / output_dir
        self.timeout = timeout
        self.logger = get_logger("release.builder")

    async def build(self) -> BuildResult:
        """Run the build and check that it produced output.

        Raises:
            BuildError: If the command fails, times out or produces nothing
        """
        start = time.perf_counter()
        self.logger.info("builder.started", cmd=self.command, cwd=str(self.source_dir))

        try:
            process = await asyncio.create_subprocess_shell(
                self.command,
                cwd=str(self.source_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise BuildError(f"Could not start build: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise BuildError(f"Build timed out after {self.timeout} seconds")

        stdout_text = stdout.decode(errors="replace") if stdout else ""
        stderr_text = stderr.decode(errors="replace") if stderr else ""

        if process.returncode != 0:
            self.logger.error(
                "builder.failed",
                exit_code=process.returncode,
                error_preview=stderr_text[:500],
            )
            raise BuildError(
                f"Build failed with exit code {process.returncode}: "
                f"{stderr_text.strip() or stdout_text.strip()}",
                output=stdout_text,
            )

        if not self.output_dir.is_dir():
            raise BuildError(f"Build produced no output directory: {self.output_dir}")

        duration_ms = int((time.perf_counter() - start) * 1000)
        self.logger.info("builder.completed", duration_ms=duration_ms)
        return BuildResult(
            output_dir=self.output_dir,
            stdout=stdout_text,
            stderr=stderr_text,
            duration_ms=duration_ms,
        )
