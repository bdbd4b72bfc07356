from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path, PurePosixPath

from kana.config import Settings
from kana.schemas.container import BindMount, ContainerSpec, RunResult
from kana.schemas.site import SiteIdentity, SiteOptions, SiteType
from kana.services.engine import SITE_LABEL, EngineClient
from kana.validators import validate_container_name


logger = logging.getLogger(__name__)


NETWORK_NAME = "kana"
CONTAINER_PREFIX = "kana"
WORDPRESS_ROOT = PurePosixPath("/var/www/html")
DATABASE_IMAGE = "mariadb"

DATABASE_NAME = "wordpress"
DATABASE_USER = "wordpress"
DATABASE_PASSWORD = "wordpress"
DATABASE_ROOT_PASSWORD = "password"


class ContainerRole(str, Enum):
    DATABASE = "database"
    WORDPRESS = "wordpress"
    CLI = "wordpress_cli"


def container_name(site: str, role: ContainerRole) -> str:
    return validate_container_name(f"{CONTAINER_PREFIX}_{site}_{role.value}")


def content_target(site_type: SiteType, site: str) -> PurePosixPath | None:
    """Where a plugin or theme under development is mounted inside WordPress."""
    if site_type == SiteType.PLUGIN:
        return WORDPRESS_ROOT / "wp-content" / "plugins" / site
    if site_type == SiteType.THEME:
        return WORDPRESS_ROOT / "wp-content" / "themes" / site
    return None


class ContainerOrchestrator:
    """Builds container specs for a site's roles and submits them to the engine."""

    def __init__(self, engine: EngineClient, settings: Settings):
        self.engine = engine
        self.settings = settings

    # Directories -------------------------------------------------------

    def app_directory(self, identity: SiteIdentity, local: bool, working_directory: Path) -> Path:
        if local:
            return working_directory / "wordpress"
        return identity.directory / "app"

    def database_directory(self, identity: SiteIdentity) -> Path:
        return identity.directory / "database"

    # Spec pieces -------------------------------------------------------

    def wordpress_environment(self, identity: SiteIdentity) -> list[str]:
        return [
            f"WORDPRESS_DB_HOST={container_name(identity.name, ContainerRole.DATABASE)}",
            f"WORDPRESS_DB_USER={DATABASE_USER}",
            f"WORDPRESS_DB_PASSWORD={DATABASE_PASSWORD}",
            f"WORDPRESS_DB_NAME={DATABASE_NAME}",
        ]

    def routing_labels(self, identity: SiteIdentity) -> dict[str, str]:
        router = f"traefik.http.routers.wordpress-{identity.name}"
        rule = f"Host(`{identity.domain}`)"
        return {
            "traefik.enable": "true",
            f"{router}-http.entrypoints": "web",
            f"{router}-http.rule": rule,
            f"{router}.entrypoints": "websecure",
            f"{router}.rule": rule,
            f"{router}.tls": "true",
        }

    def app_mounts(
        self,
        identity: SiteIdentity,
        app_dir: Path,
        site_type: SiteType,
        working_directory: Path,
    ) -> list[BindMount]:
        mounts = [BindMount(source=str(app_dir), target=str(WORDPRESS_ROOT))]
        target = content_target(site_type, identity.name)
        if target is not None:
            mounts.append(BindMount(source=str(working_directory), target=str(target)))
        return mounts

    # Specs -------------------------------------------------------------

    def database_spec(self, identity: SiteIdentity, database_dir: Path) -> ContainerSpec:
        name = container_name(identity.name, ContainerRole.DATABASE)
        return ContainerSpec(
            name=name,
            image=DATABASE_IMAGE,
            hostname=name,
            network=NETWORK_NAME,
            environment=[
                f"MARIADB_ROOT_PASSWORD={DATABASE_ROOT_PASSWORD}",
                f"MARIADB_DATABASE={DATABASE_NAME}",
                f"MARIADB_USER={DATABASE_USER}",
                f"MARIADB_PASSWORD={DATABASE_PASSWORD}",
            ],
            labels={SITE_LABEL: identity.name},
            mounts=[BindMount(source=str(database_dir), target="/var/lib/mysql")],
        )

    def app_spec(
        self,
        identity: SiteIdentity,
        options: SiteOptions,
        app_dir: Path,
        working_directory: Path,
    ) -> ContainerSpec:
        name = container_name(identity.name, ContainerRole.WORDPRESS)
        labels = self.routing_labels(identity)
        labels[SITE_LABEL] = identity.name
        return ContainerSpec(
            name=name,
            image=f"wordpress:php{options.php}",
            hostname=name,
            network=NETWORK_NAME,
            environment=self.wordpress_environment(identity),
            labels=labels,
            mounts=self.app_mounts(identity, app_dir, options.type, working_directory),
        )

    def cli_spec(
        self,
        identity: SiteIdentity,
        options: SiteOptions,
        app_dir: Path,
        working_directory: Path,
        command: list[str],
    ) -> ContainerSpec:
        name = container_name(identity.name, ContainerRole.CLI)
        return ContainerSpec(
            name=name,
            image=f"wordpress:cli-php{options.php}",
            hostname=name,
            network=NETWORK_NAME,
            command=["wp", f"--path={WORDPRESS_ROOT}", *command],
            environment=self.wordpress_environment(identity),
            labels={SITE_LABEL: identity.name},
            mounts=self.app_mounts(identity, app_dir, options.type, working_directory),
        )

    # Submission --------------------------------------------------------

    def _prepare(self, spec: ContainerSpec) -> None:
        if spec.network:
            self.engine.ensure_network(spec.network)
        self.engine.ensure_image(spec.image)

    def submit(self, spec: ContainerSpec) -> str:
        """Ensure network and image, then run the container (idempotent)."""
        self._prepare(spec)
        return self.engine.run(spec)

    def submit_and_clean(self, spec: ContainerSpec) -> RunResult:
        """Ensure network and image, then run a one-shot container and remove it."""
        self._prepare(spec)
        logger.debug("Running one-shot %s: %s", spec.name, " ".join(spec.command))
        return self.engine.run_and_clean(spec)
