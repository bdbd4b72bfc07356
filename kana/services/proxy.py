from __future__ import annotations

import logging
from pathlib import Path

import yaml

from kana.config import Settings
from kana.schemas.container import BindMount, ContainerSpec, ExposedPort
from kana.services.engine import PROXY_LABEL, EngineClient
from kana.services.orchestrator import NETWORK_NAME
from kana.utils.path_utils import ensure_directory


logger = logging.getLogger(__name__)


PROXY_CONTAINER = "kana_traefik"
DOCKER_SOCKET = "/var/run/docker.sock"
CONFIG_TARGET = "/etc/traefik"
CERTS_TARGET = "/var/certs"


class ProxyManager:
    """Owns the single Traefik container shared by every site."""

    def __init__(self, engine: EngineClient, settings: Settings):
        self.engine = engine
        self.settings = settings

    def static_config(self) -> dict:
        return {
            "entryPoints": {
                "web": {"address": ":80"},
                "websecure": {"address": ":443"},
            },
            "api": {"insecure": True},
            "providers": {
                "docker": {"exposedByDefault": False, "network": NETWORK_NAME},
                "file": {"filename": f"{CONFIG_TARGET}/dynamic.yaml", "watch": True},
            },
        }

    def dynamic_config(self) -> dict:
        certificate = {
            "certFile": f"{CERTS_TARGET}/{self.settings.site_cert}",
            "keyFile": f"{CERTS_TARGET}/{self.settings.site_key}",
        }
        return {
            "tls": {
                "certificates": [certificate],
                "stores": {"default": {"defaultCertificate": certificate}},
            },
        }

    def write_config(self) -> Path:
        """Write traefik.yaml and dynamic.yaml into the proxy config directory."""
        config_dir = ensure_directory(self.settings.proxy_directory)
        (config_dir / "traefik.yaml").write_text(
            yaml.safe_dump(self.static_config(), sort_keys=False), encoding="utf-8"
        )
        (config_dir / "dynamic.yaml").write_text(
            yaml.safe_dump(self.dynamic_config(), sort_keys=False), encoding="utf-8"
        )
        return config_dir

    def container_spec(self) -> ContainerSpec:
        return ContainerSpec(
            name=PROXY_CONTAINER,
            image=self.settings.proxy_image,
            hostname=PROXY_CONTAINER,
            network=NETWORK_NAME,
            labels={PROXY_LABEL: "true"},
            ports=[ExposedPort("80"), ExposedPort("443"), ExposedPort("8080")],
            mounts=[
                BindMount(source=DOCKER_SOCKET, target=DOCKER_SOCKET, read_only=True),
                BindMount(source=str(self.settings.proxy_directory), target=CONFIG_TARGET),
                BindMount(source=str(self.settings.certs_directory), target=CERTS_TARGET),
            ],
        )

    def ensure_running(self) -> bool:
        """Start the proxy if it is not running. Returns True when it was started."""
        _, running = self.engine.is_running(PROXY_CONTAINER)
        if running:
            return False

        logger.info("Starting shared proxy %s", PROXY_CONTAINER)
        self.write_config()
        ensure_directory(self.settings.certs_directory)
        self.engine.ensure_network(NETWORK_NAME)
        self.engine.ensure_image(self.settings.proxy_image)
        self.engine.run(self.container_spec())
        return True

    def maybe_stop(self) -> bool:
        """Stop the proxy once no site containers remain. Returns True when stopped."""
        remaining = self.engine.list_containers()
        if remaining:
            logger.debug("Leaving proxy running, %d site container(s) remain", len(remaining))
            return False
        return self.engine.stop(PROXY_CONTAINER)
