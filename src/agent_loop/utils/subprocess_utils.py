"""Short synchronous helper commands (PATH lookups, git queries)."""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)


class SubprocessError(Exception):
    """Exception raised when a subprocess command fails."""

    def __init__(self, cmd: str, returncode: int, stderr: str, stdout: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(
            f"Command failed with exit code {returncode}: {cmd}\nstderr: {stderr}"
        )


def run_command(
    cmd: Union[str, List[str]],
    *,
    cwd: Optional[Path] = None,
    check: bool = True,
    timeout: Optional[int] = None,
) -> subprocess.CompletedProcess:
    """
    Run a command and capture its output.

    Raises:
        SubprocessError: If check=True and command fails
        subprocess.TimeoutExpired: If timeout exceeded
    """
    result = subprocess.run(
        cmd,
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,  # We handle check ourselves for better error messages
    )

    if check and result.returncode != 0:
        cmd_str = cmd if isinstance(cmd, str) else " ".join(cmd)
        raise SubprocessError(
            cmd=cmd_str,
            returncode=result.returncode,
            stderr=result.stderr,
            stdout=result.stdout,
        )

    return result


def check_command_exists(command: str) -> bool:
    """True if command resolves on PATH."""
    try:
        result = subprocess.run(
            ["which", command],
            capture_output=True,
            text=True,
            check=False,
        )
        return result.returncode == 0
    except OSError:
        return False


def detect_default_branch(cwd: Optional[Path] = None, fallback: str = "master") -> str:
    """Name of the remote's default branch, or fallback outside a clone."""
    try:
        result = run_command(
            ["git", "symbolic-ref", "--short", "refs/remotes/origin/HEAD"],
            cwd=cwd,
            timeout=10,
        )
    except (SubprocessError, subprocess.TimeoutExpired, OSError) as e:
        logger.debug(f"Could not detect default branch, using '{fallback}': {e}")
        return fallback

    ref = result.stdout.strip()
    if not ref:
        return fallback
    # origin/main -> main
    return ref.split("/", 1)[1] if "/" in ref else ref
