from __future__ import annotations

import logging
import webbrowser
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from kana.config import Settings, load_site_options
from kana.schemas.site import PluginInfo, SiteIdentity, SiteOptions, SiteType
from kana.services.engine import EngineClient
from kana.services.links import resolve_site
from kana.services.orchestrator import (
    NETWORK_NAME,
    WORDPRESS_ROOT,
    ContainerOrchestrator,
    ContainerRole,
    container_name,
    content_target,
)
from kana.services.proxy import ProxyManager
from kana.services.verifier import ReadinessVerifier
from kana.utils.path_utils import ensure_directory, remove_if_exists
from kana.utils.platform import get_daemon_launcher
from kana.validators import ValidationError, quote_shell_arg


logger = logging.getLogger(__name__)


PHP_INI = "/usr/local/etc/php/php.ini"
XDEBUG_CHECK = "pecl list | grep xdebug"
XDEBUG_SETTINGS = [
    "xdebug.mode=debug",
    "xdebug.client_host=host.docker.internal",
    "xdebug.discover_client_host=on",
    "xdebug.start_with_request=trigger",
]

# Bundled with every WordPress download; never reported as site plugins.
BUILTIN_PLUGINS = ("hello", "akismet")


class CommandFailedError(RuntimeError):
    """Raised when a WP-CLI or in-container command exits non-zero."""

    def __init__(self, command: str, exit_code: int, output: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"Command failed ({exit_code}): {command}\n{output}".rstrip())


class SiteNotRunningError(RuntimeError):
    pass


class PluginListError(ValueError):
    pass


_plugin_list_adapter = TypeAdapter(list[PluginInfo])


def parse_plugin_list(output: str) -> list[PluginInfo]:
    """Parse `wp plugin list --format=json` output."""
    try:
        return _plugin_list_adapter.validate_json(output.strip() or "[]")
    except PydanticValidationError as e:
        raise PluginListError(f"Unable to parse plugin list: {e}") from e


def filter_plugins(plugins: list[PluginInfo], site_name: str) -> list[str]:
    """Drop drop-ins, the site's own slug and bundled plugins, keeping order."""
    ignored = {site_name, *BUILTIN_PLUGINS}
    return [
        plugin.name
        for plugin in plugins
        if plugin.status != "dropin" and plugin.name not in ignored
    ]


@dataclass
class SiteContext:
    """Everything one command needs, built once and passed explicitly."""

    settings: Settings
    identity: SiteIdentity
    options: SiteOptions
    working_directory: Path
    engine: EngineClient
    orchestrator: ContainerOrchestrator
    proxy: ProxyManager
    verifier: ReadinessVerifier

    @classmethod
    def create(
        cls,
        settings: Settings,
        working_directory: Path,
        name: str | None = None,
        overrides: dict[str, Any] | None = None,
        engine: EngineClient | None = None,
        verifier: ReadinessVerifier | None = None,
    ) -> "SiteContext":
        overrides = overrides or {}
        if name and (overrides.get("type") in (SiteType.PLUGIN, SiteType.THEME) or overrides.get("local")):
            raise ValidationError(
                "Invalid flags detected. 'plugin', 'theme' and 'local' are not valid with named sites"
            )

        resolved = resolve_site(settings, working_directory, name)
        options = load_site_options(resolved.working_directory, settings, overrides)

        if engine is None:
            launcher = get_daemon_launcher(settings.docker_start_retries, settings.docker_start_interval)
            engine = EngineClient(settings, launcher=launcher)

        return cls(
            settings=settings,
            identity=resolved.identity,
            options=options,
            working_directory=resolved.working_directory,
            engine=engine,
            orchestrator=ContainerOrchestrator(engine, settings),
            proxy=ProxyManager(engine, settings),
            verifier=verifier or ReadinessVerifier(settings),
        )


class SiteController:
    """Sequences start, stop, install and verification for one site."""

    def __init__(self, context: SiteContext):
        self.context = context
        self.engine = context.engine
        self.orchestrator = context.orchestrator

    @property
    def identity(self) -> SiteIdentity:
        return self.context.identity

    @property
    def options(self) -> SiteOptions:
        return self.context.options

    def site_containers(self) -> list[str]:
        return [
            container_name(self.identity.name, ContainerRole.DATABASE),
            container_name(self.identity.name, ContainerRole.WORDPRESS),
        ]

    def get_url(self, insecure: bool = False) -> str:
        return self.identity.url if insecure else self.identity.secure_url

    def is_running(self) -> bool:
        return len(self.engine.list_containers(self.identity.name)) != 0

    # Lifecycle ---------------------------------------------------------

    def start(self) -> None:
        logger.info("Starting site %s", self.identity.name)
        self.engine.ensure_network(NETWORK_NAME)
        self.context.proxy.ensure_running()

        app_dir = self.orchestrator.app_directory(
            self.identity, self.options.local, self.context.working_directory
        )
        database_dir = self.orchestrator.database_directory(self.identity)

        if self.options.local and remove_if_exists(app_dir / "wp-config.php"):
            logger.debug("Removed stale wp-config.php from %s", app_dir)

        ensure_directory(app_dir)
        ensure_directory(database_dir)

        specs = [
            self.orchestrator.database_spec(self.identity, database_dir),
            self.orchestrator.app_spec(
                self.identity, self.options, app_dir, self.context.working_directory
            ),
        ]
        for spec in specs:
            self.orchestrator.submit(spec)

    def stop(self) -> None:
        logger.info("Stopping site %s", self.identity.name)
        for name in self.site_containers():
            self.engine.stop(name)
        if self.context.proxy.maybe_stop():
            logger.info("No sites left running, stopped the shared proxy")

    def verify(self) -> bool:
        return self.context.verifier.verify(self.identity.secure_url)

    def open(self, opener: Callable[[str], Any] = webbrowser.open) -> None:
        self.verify()
        opener(self.identity.secure_url)

    # WP-CLI ------------------------------------------------------------

    def get_running_options(self) -> SiteOptions | None:
        """Recover role and local mode from the running app container's mounts."""
        mounts = self.engine.get_mounts(container_name(self.identity.name, ContainerRole.WORDPRESS))
        if not mounts:
            return None

        managed_app_dir = self.orchestrator.app_directory(
            self.identity, False, self.context.working_directory
        )
        plugin_target = str(content_target(SiteType.PLUGIN, self.identity.name))
        theme_target = str(content_target(SiteType.THEME, self.identity.name))

        site_type = SiteType.SITE
        local = False
        for mount in mounts:
            destination = mount.get("Destination")
            if destination == str(WORDPRESS_ROOT):
                local = Path(mount.get("Source", "")) != managed_app_dir
            elif destination == plugin_target:
                site_type = SiteType.PLUGIN
            elif destination == theme_target:
                site_type = SiteType.THEME

        return self.options.model_copy(update={"type": site_type, "local": local})

    def run_wp_cli(self, command: list[str]) -> str:
        """Run a WP-CLI command in a one-shot container and return its output."""
        options = self.get_running_options() or self.options
        app_dir = self.orchestrator.app_directory(
            self.identity, options.local, self.context.working_directory
        )
        spec = self.orchestrator.cli_spec(
            self.identity, options, app_dir, self.context.working_directory, command
        )
        result = self.orchestrator.submit_and_clean(spec)
        if result.status_code != 0:
            raise CommandFailedError("wp " + " ".join(command), result.status_code, result.output)
        return result.output

    def install(self) -> None:
        logger.info("Finishing WordPress setup...")
        settings = self.context.settings
        self.run_wp_cli([
            "core",
            "install",
            f"--url={self.get_url(insecure=False)}",
            f"--title=Kana Development {self.options.type.value}: {self.identity.name}",
            f"--admin_user={settings.admin_username}",
            f"--admin_password={settings.admin_password}",
            f"--admin_email={settings.admin_email}",
        ])

    def install_default_plugins(self) -> None:
        for plugin in self.options.plugins:
            logger.info("Installing plugin %s", plugin)
            self.run_wp_cli(["plugin", "install", "--activate", plugin])

    def install_xdebug(self) -> bool:
        """Install and enable Xdebug in the app container. Returns True when changed."""
        if not self.options.xdebug:
            return False

        name = container_name(self.identity.name, ContainerRole.WORDPRESS)
        _, running = self.engine.is_running(name)
        if not running:
            raise SiteNotRunningError(f"Container {name} is not running")

        logger.info("Installing Xdebug...")

        # grep exits non-zero when xdebug is absent, so the check is not fatal
        check = self.engine.exec(name, XDEBUG_CHECK)
        if "xdebug" in check.stdout:
            logger.info("Xdebug already installed")
            return False

        commands = ["pecl install xdebug", "docker-php-ext-enable xdebug"]
        commands += [f"echo {quote_shell_arg(line)} >> {PHP_INI}" for line in XDEBUG_SETTINGS]

        for command in commands:
            result = self.engine.exec(name, command)
            if result.exit_code != 0:
                raise CommandFailedError(command, result.exit_code, result.stderr or result.stdout)

        self.engine.restart(name)
        return True

    def get_installed_plugins(self) -> list[str]:
        output = self.run_wp_cli(["plugin", "list", "--format=json"])
        return filter_plugins(parse_plugin_list(output), self.identity.name)
