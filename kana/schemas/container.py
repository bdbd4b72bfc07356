from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ExposedPort:
    port: str
    protocol: str = "tcp"

    @property
    def key(self) -> str:
        return f"{self.port}/{self.protocol}"


@dataclass(frozen=True)
class BindMount:
    source: str
    target: str
    read_only: bool = False


@dataclass
class ContainerSpec:
    """Everything needed to create one container."""

    name: str
    image: str
    hostname: str = ""
    network: str = ""
    command: list[str] = field(default_factory=list)
    environment: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    mounts: list[BindMount] = field(default_factory=list)
    ports: list[ExposedPort] = field(default_factory=list)


@dataclass
class ExecResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0


@dataclass
class RunResult:
    """Outcome of a one-shot container: exit status plus captured log text."""

    status_code: int
    output: str
