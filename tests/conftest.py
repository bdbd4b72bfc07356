"""Shared fixtures: an in-memory stand-in for docker's low-level APIClient."""

from __future__ import annotations

import itertools
from pathlib import Path

import pytest
from docker.errors import APIError, ImageNotFound

from kana.config import Settings
from kana.services.engine import EngineClient


class FakeDockerAPI:
    """Implements the subset of docker.APIClient that EngineClient uses.

    Containers created with a command behave as one-shot containers: they exit
    as soon as they are started, with `run_status` and `run_output`.
    """

    def __init__(self, images: tuple[str, ...] = ()):
        self._ids = itertools.count(1)
        self.containers_by_id: dict[str, dict] = {}
        self.networks_by_id: dict[str, dict] = {}
        self.images: set[str] = set(images)
        self.pulled: list[str] = []
        self.created: list[dict] = []
        self.removed: list[str] = []
        self.exec_commands: list[str] = []
        self.exec_results: dict[str, tuple[bytes, bytes, int]] = {}
        self._execs: dict[str, str] = {}
        self.errors: dict[str, Exception] = {}
        self.run_status = 0
        self.run_output = b""

    def _next_id(self) -> str:
        return f"{next(self._ids):012x}"

    def _maybe_fail(self, method: str) -> None:
        if method in self.errors:
            raise self.errors[method]

    def names(self, running_only: bool = False) -> list[str]:
        return [
            c["Name"] for c in self.containers_by_id.values()
            if c["Running"] or not running_only
        ]

    def by_name(self, name: str) -> dict | None:
        for container in self.containers_by_id.values():
            if container["Name"] == name:
                return container
        return None

    # Containers -------------------------------------------------------

    def containers(self, all: bool = False, filters: dict | None = None) -> list[dict]:
        self._maybe_fail("containers")
        label_filter = (filters or {}).get("label")
        result = []
        for container in self.containers_by_id.values():
            if not all and not container["Running"]:
                continue
            if label_filter:
                key, _, value = label_filter.partition("=")
                if key not in container["Labels"]:
                    continue
                if value and container["Labels"][key] != value:
                    continue
            result.append({
                "Id": container["Id"],
                "Names": [f"/{container['Name']}"],
                "Labels": dict(container["Labels"]),
            })
        return result

    def create_host_config(self, port_bindings=None, mounts=None) -> dict:
        return {
            "PortBindings": port_bindings or {},
            "Mounts": [
                {"Source": m["Source"], "Destination": m["Target"], "RW": not m["ReadOnly"]}
                for m in (mounts or [])
            ],
        }

    def create_endpoint_config(self) -> dict:
        return {}

    def create_networking_config(self, endpoints: dict) -> dict:
        return {"EndpointsConfig": endpoints}

    def create_container(self, image, name=None, hostname=None, command=None, environment=None,
                         labels=None, tty=False, ports=None, host_config=None, networking_config=None):
        self._maybe_fail("create_container")
        if image not in self.images:
            raise ImageNotFound(f"No such image: {image}")
        if self.by_name(name):
            raise APIError(f"Conflict. The container name /{name} is already in use")
        container_id = self._next_id()
        record = {
            "Id": container_id,
            "Name": name,
            "Image": image,
            "Hostname": hostname,
            "Command": command,
            "Env": environment or [],
            "Labels": labels or {},
            "Tty": tty,
            "Ports": ports or [],
            "HostConfig": host_config or {},
            "Networking": networking_config,
            "Running": False,
            "StatusCode": 0,
            "Logs": b"",
        }
        self.containers_by_id[container_id] = record
        self.created.append(record)
        return {"Id": container_id}

    def start(self, container_id: str) -> None:
        self._maybe_fail("start")
        record = self.containers_by_id[container_id]
        if record["Command"]:
            record["Running"] = False
            record["StatusCode"] = self.run_status
            record["Logs"] = self.run_output
        else:
            record["Running"] = True

    def stop(self, container_id: str) -> None:
        self._maybe_fail("stop")
        self.containers_by_id[container_id]["Running"] = False

    def remove_container(self, container_id: str, force: bool = False) -> None:
        self._maybe_fail("remove_container")
        record = self.containers_by_id[container_id]
        if record["Running"] and not force:
            raise APIError("You cannot remove a running container")
        del self.containers_by_id[container_id]
        self.removed.append(record["Name"])

    def wait(self, container_id: str) -> dict:
        self._maybe_fail("wait")
        return {"StatusCode": self.containers_by_id[container_id]["StatusCode"], "Error": None}

    def logs(self, container_id: str, stdout: bool = True, stderr: bool = True) -> bytes:
        self._maybe_fail("logs")
        return self.containers_by_id[container_id]["Logs"]

    def inspect_container(self, container_id: str) -> dict:
        return {"Id": container_id, "Mounts": self.containers_by_id[container_id]["HostConfig"]["Mounts"]}

    # Exec -------------------------------------------------------------

    def exec_create(self, container_id: str, cmd, stdout: bool = True, stderr: bool = True) -> dict:
        self._maybe_fail("exec_create")
        exec_id = f"exec-{self._next_id()}"
        command = cmd[-1] if isinstance(cmd, list) else cmd
        self._execs[exec_id] = command
        self.exec_commands.append(command)
        return {"Id": exec_id}

    def exec_start(self, exec_id: str, demux: bool = False):
        self._maybe_fail("exec_start")
        stdout, stderr, _ = self.exec_results.get(self._execs[exec_id], (b"", b"", 0))
        return (stdout or None, stderr or None)

    def exec_inspect(self, exec_id: str) -> dict:
        _, _, exit_code = self.exec_results.get(self._execs[exec_id], (b"", b"", 0))
        return {"ExitCode": exit_code, "Running": False}

    # Images -----------------------------------------------------------

    def inspect_image(self, image: str) -> dict:
        if image not in self.images:
            raise ImageNotFound(f"No such image: {image}")
        return {"Id": f"sha256:{image}"}

    def pull(self, image: str) -> str:
        self._maybe_fail("pull")
        self.images.add(image)
        self.pulled.append(image)
        return ""

    # Networks ---------------------------------------------------------

    def networks(self, names: list[str] | None = None) -> list[dict]:
        self._maybe_fail("networks")
        return [
            n for n in self.networks_by_id.values()
            if not names or any(name in n["Name"] for name in names)
        ]

    def create_network(self, name: str, driver: str = "bridge") -> dict:
        self._maybe_fail("create_network")
        network_id = f"net-{self._next_id()}"
        self.networks_by_id[network_id] = {"Id": network_id, "Name": name, "Driver": driver}
        return {"Id": network_id, "Warning": ""}

    def remove_network(self, network_id: str) -> None:
        del self.networks_by_id[network_id]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        app_directory=str(tmp_path / "kana"),
        app_domain="sites.kana.li",
        verify_interval=0.0,
    )


@pytest.fixture
def fake_api() -> FakeDockerAPI:
    return FakeDockerAPI()


@pytest.fixture
def engine(settings: Settings, fake_api: FakeDockerAPI) -> EngineClient:
    return EngineClient(settings, api=fake_api, sleep=lambda seconds: None)
