from __future__ import annotations

import logging
import queue
import subprocess
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TypeVar

import docker
from docker.errors import DockerException, ImageNotFound
from docker.types import Mount

from kana.config import Settings
from kana.schemas.container import ContainerSpec, ExecResult, RunResult
from kana.utils.platform import DaemonLauncher


logger = logging.getLogger(__name__)


T = TypeVar("T")

# Every container kana creates for a site carries this label; the shared proxy
# carries PROXY_LABEL instead so it never counts as a site container.
SITE_LABEL = "kana.site"
PROXY_LABEL = "kana.proxy"


class EngineError(RuntimeError):
    """Raised when a Docker daemon call fails."""
    pass


class DaemonUnavailableError(EngineError):
    pass


class ContainerCreateError(EngineError):
    pass


class ContainerStartError(EngineError):
    pass


class ImagePullError(EngineError):
    pass


class EngineTimeoutError(EngineError):
    pass


@contextmanager
def daemon_call(error_cls: type[EngineError], what: str) -> Iterator[None]:
    """Translate docker SDK and transport failures into a typed EngineError."""
    try:
        yield
    except EngineError:
        raise
    except (DockerException, OSError) as e:
        raise error_cls(f"{what}: {e}") from e


def _default_api_factory() -> Any:
    return docker.from_env().api


class EngineClient:
    """Typed facade over the local Docker daemon's low-level API.

    Nothing is cached between calls: every query re-lists from the daemon.
    """

    def __init__(
        self,
        settings: Settings,
        api: Any | None = None,
        launcher: DaemonLauncher | None = None,
        api_factory: Callable[[], Any] = _default_api_factory,
        sleep: Callable[[float], None] = time.sleep,
        runner: Callable[..., Any] = subprocess.run,
    ):
        self.settings = settings
        self.launcher = launcher
        self._api = api
        self._api_factory = api_factory
        self._sleep = sleep
        self._runner = runner

    @property
    def api(self) -> Any:
        if self._api is None:
            with daemon_call(DaemonUnavailableError, "Unable to connect to the Docker daemon"):
                self._api = self._api_factory()
        return self._api

    # Daemon availability -------------------------------------------

    def _probe(self) -> None:
        if self._api is None:
            self._api = self._api_factory()
        self._api.containers()

    def ensure_daemon_available(self) -> None:
        """Probe the daemon, launching it where the platform allows.

        Raises DaemonUnavailableError once the launch retry budget is spent,
        or immediately when no launcher is available for this host.
        """
        try:
            self._probe()
            return
        except (DockerException, OSError) as e:
            first_error = e

        if self.launcher is None:
            raise DaemonUnavailableError(f"Docker daemon is not reachable: {first_error}") from first_error

        logger.info("Docker doesn't appear to be running. Trying to start Docker.")
        try:
            self._runner(list(self.launcher.command), check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise DaemonUnavailableError("Unable to start Docker") from e

        for attempt in range(1, self.launcher.retries + 1):
            self._sleep(self.launcher.interval)
            try:
                self._probe()
                logger.info("Docker is up after %d attempt(s)", attempt)
                return
            except (DockerException, OSError) as e:
                logger.debug("Docker not ready (attempt %d/%d): %s", attempt, self.launcher.retries, e)

        raise DaemonUnavailableError("Starting Docker is taking too long. Giving up.")

    # Containers -------------------------------------------------------

    def list_containers(self, site: str | None = None) -> list[str]:
        """Return IDs of all kana site containers, optionally narrowed to one site."""
        label = f"{SITE_LABEL}={site}" if site else SITE_LABEL
        with daemon_call(EngineError, "Listing containers failed"):
            containers = self.api.containers(all=True, filters={"label": label})
        return [container["Id"] for container in containers]

    def is_running(self, name: str) -> tuple[str, bool]:
        with daemon_call(EngineError, "Listing running containers failed"):
            containers = self.api.containers()
        for container in containers:
            for container_name in container.get("Names") or []:
                if container_name.lstrip("/") == name:
                    return container["Id"], True
        return "", False

    def run(self, spec: ContainerSpec) -> str:
        """Create and start a container, reusing one already running under the same name."""
        container_id, running = self.is_running(spec.name)
        if running:
            logger.debug("Container %s already running (%s)", spec.name, container_id[:12])
            return container_id

        api = self.api
        with daemon_call(ContainerCreateError, f"Unable to create container {spec.name}"):
            host_config = api.create_host_config(
                port_bindings={port.key: int(port.port) for port in spec.ports},
                mounts=[
                    Mount(target=m.target, source=m.source, type="bind", read_only=m.read_only)
                    for m in spec.mounts
                ],
            )
            networking_config = None
            if spec.network:
                networking_config = api.create_networking_config(
                    {spec.network: api.create_endpoint_config()}
                )
            response = api.create_container(
                image=spec.image,
                name=spec.name,
                hostname=spec.hostname or None,
                command=spec.command or None,
                environment=spec.environment,
                labels=spec.labels,
                tty=True,
                ports=[(int(port.port), port.protocol) for port in spec.ports],
                host_config=host_config,
                networking_config=networking_config,
            )
        container_id = response["Id"]

        try:
            with daemon_call(ContainerStartError, f"Unable to start container {spec.name}"):
                api.start(container_id)
        except ContainerStartError:
            # A created but unstarted container would hold the name forever.
            self._remove_quietly(container_id, spec.name)
            raise

        logger.info("Started container %s", spec.name)
        return container_id

    def wait(self, container_id: str) -> int:
        with daemon_call(EngineError, f"Waiting for container {container_id[:12]} failed"):
            result = self.api.wait(container_id)
        error = result.get("Error")
        if error:
            message = error.get("Message") if isinstance(error, dict) else error
            raise EngineError(f"Waiting for container {container_id[:12]} failed: {message}")
        return int(result.get("StatusCode", 0))

    def logs(self, container_id: str, timeout: float | None = None) -> str:
        timeout = self.settings.log_timeout if timeout is None else timeout
        api = self.api
        with daemon_call(EngineError, f"Fetching logs for {container_id[:12]} failed"):
            raw = self._bounded(
                lambda: api.logs(container_id, stdout=True, stderr=True),
                timeout,
                f"Fetching logs for {container_id[:12]}",
            )
        return raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)

    def run_and_clean(self, spec: ContainerSpec) -> RunResult:
        """Run a one-shot container to completion, capture its output and remove it."""
        container_id = self.run(spec)
        try:
            status_code = self.wait(container_id)
            output = self.logs(container_id)
        finally:
            self._remove_quietly(container_id, spec.name)
        return RunResult(status_code=status_code, output=output)

    def _remove_quietly(self, container_id: str, name: str) -> None:
        try:
            self.api.remove_container(container_id, force=True)
        except (DockerException, OSError) as e:
            logger.warning("Unable to remove container %s: %s", name, e)

    def stop(self, name: str) -> bool:
        """Stop and remove a container. Returns False when it was not running."""
        container_id, running = self.is_running(name)
        if not running:
            return False

        with daemon_call(EngineError, f"Unable to stop container {name}"):
            self.api.stop(container_id)
            self.api.remove_container(container_id)
        logger.info("Stopped container %s", name)
        return True

    def restart(self, name: str) -> bool:
        """Stop then start a container in place. Returns False when it was not running."""
        container_id, running = self.is_running(name)
        if not running:
            return False

        with daemon_call(EngineError, f"Unable to restart container {name}"):
            self.api.stop(container_id)
            self.api.start(container_id)
        logger.info("Restarted container %s", name)
        return True

    def exec(self, name: str, command: str, timeout: float | None = None) -> ExecResult:
        """Run a shell command inside a running container.

        A container that is not running yields an empty result, not an error.
        """
        container_id, running = self.is_running(name)
        if not running:
            return ExecResult()

        timeout = self.settings.exec_timeout if timeout is None else timeout
        api = self.api
        logger.debug("Exec in %s: %s", name, command)

        with daemon_call(EngineError, f"Exec in {name} failed"):
            exec_id = api.exec_create(container_id, ["sh", "-c", command], stdout=True, stderr=True)["Id"]
            stdout, stderr = self._bounded(
                lambda: api.exec_start(exec_id, demux=True),
                timeout,
                f"Exec in {name}",
            )
            exit_code = api.exec_inspect(exec_id).get("ExitCode") or 0

        return ExecResult(
            stdout=(stdout or b"").decode("utf-8", errors="replace"),
            stderr=(stderr or b"").decode("utf-8", errors="replace"),
            exit_code=exit_code,
        )

    def get_mounts(self, name: str) -> list[dict[str, Any]]:
        container_id, running = self.is_running(name)
        if not running:
            return []

        with daemon_call(EngineError, f"Inspecting container {name} failed"):
            details = self.api.inspect_container(container_id)
        return details.get("Mounts") or []

    # Images -----------------------------------------------------------

    def ensure_image(self, image: str) -> bool:
        """Pull an image if it is not present locally. Returns True when pulled."""
        api = self.api
        try:
            api.inspect_image(image)
            return False
        except ImageNotFound:
            pass
        except (DockerException, OSError) as e:
            raise EngineError(f"Inspecting image {image} failed: {e}") from e

        logger.info("Pulling image %s", image)
        with daemon_call(ImagePullError, f"Unable to pull image {image}"):
            api.pull(image)
            api.inspect_image(image)
        return True

    # Networks ---------------------------------------------------------

    def _find_network(self, name: str) -> dict[str, Any] | None:
        with daemon_call(EngineError, "Listing networks failed"):
            networks = self.api.networks(names=[name])
        for network in networks:
            if network.get("Name") == name:
                return network
        return None

    def ensure_network(self, name: str) -> bool:
        """Create a bridge network if absent. Returns True when newly created."""
        if self._find_network(name):
            return False

        logger.info("Creating network %s", name)
        with daemon_call(EngineError, f"Unable to create network {name}"):
            created = self.api.create_network(name, driver="bridge")
        if not created or not created.get("Id"):
            raise EngineError(f"Unable to create network {name}")
        return True

    def remove_network(self, name: str) -> bool:
        network = self._find_network(name)
        if not network:
            return False

        with daemon_call(EngineError, f"Unable to remove network {name}"):
            self.api.remove_network(network["Id"])
        return True

    # Internal helpers -------------------------------------------------

    @staticmethod
    def _bounded(operation: Callable[[], T], timeout: float | None, what: str) -> T:
        """Run a blocking stream read on a daemon thread and wait at most `timeout` seconds.

        The worker reports through a single-use queue; a hung stream leaves only
        the daemon thread behind and never blocks interpreter exit.
        """
        done: queue.Queue[tuple[bool, Any]] = queue.Queue(maxsize=1)

        def _target() -> None:
            try:
                done.put((True, operation()))
            except BaseException as e:
                done.put((False, e))

        worker = threading.Thread(target=_target, name=f"kana-{what}", daemon=True)
        worker.start()

        try:
            ok, value = done.get(timeout=timeout)
        except queue.Empty as e:
            raise EngineTimeoutError(f"{what} timed out after {timeout}s") from e

        if not ok:
            raise value
        return value
