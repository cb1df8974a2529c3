"""
File and command operations for the daemon, confined to its working directory.
"""

import logging
import os
import signal
import subprocess
from typing import List, Dict, Any, Tuple

logger = logging.getLogger(__name__)


class LocalBackend:
    """Reads, writes, lists and runs commands under one project directory.

    Every path is resolved against the working directory; anything that
    lands outside it (``..``, absolute paths, symlinks) raises ValueError.
    """

    def __init__(self, working_directory: str = "."):
        self.working_directory = os.path.abspath(working_directory)

    def resolve(self, path: str) -> str:
        full = os.path.normpath(os.path.join(self.working_directory, path or "."))
        real = os.path.realpath(full)
        root = os.path.realpath(self.working_directory)
        if real != root and not real.startswith(root + os.sep):
            raise ValueError(f"Path escapes working directory: {path!r}")
        return full

    def list_dir(self, path: str = ".") -> List[Dict[str, Any]]:
        """Directory entries as ``{name, isDirectory}``, sorted by name."""
        full = self.resolve(path)
        with os.scandir(full) as it:
            entries = [{"name": e.name, "isDirectory": e.is_dir()} for e in it]
        return sorted(entries, key=lambda e: e["name"])

    def read_file(self, path: str) -> str:
        # newline="" keeps line endings exactly as stored
        with open(self.resolve(path), "r", encoding="utf-8", newline="") as f:
            return f.read()

    def write_file(self, path: str, content: str) -> None:
        full = self.resolve(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "w", encoding="utf-8", newline="") as f:
            f.write(content)

    def run_command(self, command: str, cwd: str = ".", timeout: int = 30) -> Tuple[str, str, int]:
        """Run a shell command. Returns (stdout, stderr, exit code); -1 on timeout."""
        proc = subprocess.Popen(
            command, shell=True, cwd=self.resolve(cwd),
            stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True,
            start_new_session=True,  # own process group so a timeout kills children too
        )
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out after %ss: %s", timeout, command)
            _kill_group(proc)
            stdout, stderr = proc.communicate(timeout=5)
            return stdout or "", f"Command timed out after {timeout}s\n{stderr or ''}", -1
        return stdout or "", stderr or "", proc.returncode


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(os.getpgid(proc.pid), signal.SIGTERM)
    except OSError:
        pass
    try:
        proc.kill()
    except OSError:
        pass
