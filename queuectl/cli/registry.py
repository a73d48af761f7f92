"""
Registry of worker processes started by ``queuectl worker start``.

A JSON list of pids in a pidfile. Only used to signal those processes
later; workers themselves never read it.
"""

import json
import os
from pathlib import Path


class WorkerRegistry:
    """Pidfile-backed list of worker process ids."""

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> list[int]:
        """
        Read the recorded pids.

        Returns:
            The pids, or an empty list if there is no registry.

        Raises:
            ValueError: If the pidfile is not a JSON list of integers.
        """
        if not self.path.exists():
            return []
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, list) or not all(isinstance(pid, int) for pid in data):
            raise ValueError(f"Malformed worker registry: {self.path}")
        return data

    def save(self, pids: list[int]) -> None:
        self.path.write_text(json.dumps(pids), encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)

    def alive_pids(self) -> list[int]:
        """Recorded pids whose process is still running."""
        return [pid for pid in self.load() if is_alive(pid)]


def is_alive(pid: int) -> bool:
    """Check whether a process with ``pid`` exists."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True
