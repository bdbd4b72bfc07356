from __future__ import annotations

import platform
from dataclasses import dataclass


@dataclass(frozen=True)
class DaemonLauncher:
    """How to bring up the Docker daemon on hosts where it runs as a desktop app."""

    command: tuple[str, ...]
    retries: int
    interval: float


def get_daemon_launcher(
    retries: int = 12,
    interval: float = 5.0,
    system: str | None = None,
) -> DaemonLauncher | None:
    """Return the launcher for this host, or None when the daemon cannot be auto-started."""
    system = (system or platform.system()).lower()

    if system == "darwin":
        return DaemonLauncher(command=("open", "-a", "Docker"), retries=retries, interval=interval)

    return None
