"""
Process Runner - execute one external command for a build step.

Security:
- No shell=True anywhere
- Commands are argument lists, never strings
- Stdout/stderr are only logged at DEBUG level
"""
import logging
import os
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

# Placeholder in env overlay values replaced with the absolute workspace path
WORKDIR_PLACEHOLDER = "$WORKDIR"


class ProcessRunnerError(Exception):
    """Raised for commands that can never be run (empty argument list)."""
    pass


@dataclass
class CommandResult:
    """Result of a subprocess command."""
    command: list[str]
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int = 0
    timed_out: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class StepRunner(Protocol):
    """
    Anything that can run one command in a directory with an environment.

    `errors` is the decode error handler for stdout/stderr. Use
    "surrogateescape" when the output holds file names that must map back
    to the exact bytes on disk.
    """

    def run(
        self,
        command: Sequence[str],
        cwd: Path,
        env: Optional[Mapping[str, str]] = None,
        errors: str = "replace",
    ) -> CommandResult: ...


def resolve_environment(
    overlay: Optional[Mapping[str, str]],
    workdir: Path,
    base: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """
    Build the child environment for a step.

    Each overlay value first has $WORKDIR replaced with the absolute workdir,
    then remaining $VAR / ${VAR} references are expanded against the host
    environment. Overlay entries are applied after the inherited ones, so
    they win on key collision.
    """
    env = dict(os.environ if base is None else base)
    if not overlay:
        return env

    abs_workdir = str(Path(workdir).resolve())
    for key, value in overlay.items():
        value = value.replace(WORKDIR_PLACEHOLDER, abs_workdir)
        env[key] = os.path.expandvars(value)
    return env


class SubprocessRunner:
    """Run commands as local child processes."""

    def __init__(self, timeout: Optional[int] = None):
        self.timeout = timeout

    def run(
        self,
        command: Sequence[str],
        cwd: Path,
        env: Optional[Mapping[str, str]] = None,
        errors: str = "replace",
    ) -> CommandResult:
        cmd = list(command)
        if not cmd:
            raise ProcessRunnerError("Command cannot be empty")

        start_time = datetime.now(timezone.utc)
        timed_out = False
        error = None

        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd),
                env=dict(env) if env is not None else None,
                capture_output=True,
                timeout=self.timeout,
                text=True,
                encoding="utf-8",
                errors=errors,
            )
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            exit_code = result.returncode
            if exit_code < 0:
                error = f"signal: killed by signal {-exit_code}"
            elif exit_code != 0:
                error = f"exit status {exit_code}"

        except subprocess.TimeoutExpired as e:
            stdout = _decode(e.stdout, errors)
            stderr = _decode(e.stderr, errors)
            exit_code = -1
            timed_out = True
            error = f"timed out after {self.timeout}s"

        except OSError as e:
            # Executable missing, cwd missing, permission denied
            stdout = ""
            stderr = str(e)
            exit_code = -1
            error = f"failed to start: {e.strerror or type(e).__name__}"

        duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)

        if error is None:
            logger.info(f"command_ok cmd={cmd[0]} args={len(cmd) - 1} duration_ms={duration_ms}")
        else:
            logger.warning(
                f"command_failed cmd={cmd[0]} exit_code={exit_code} "
                f"duration_ms={duration_ms} error={error!r}"
            )
        logger.debug(f"command_output cmd={cmd[0]}\nSTDOUT:\n{stdout}\nSTDERR:\n{stderr}")

        return CommandResult(
            command=cmd,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_ms=duration_ms,
            timed_out=timed_out,
            error=error,
        )


def _decode(output, errors: str = "replace") -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors=errors)
    return output
