"""
Command-line front end for kana.

Usage:
    kana start [--name NAME] [--plugin | --theme] [--local] [--xdebug] [--php VERSION]
    kana stop [--name NAME]
    kana open [--name NAME]
    kana status [--name NAME]
    kana plugins [--name NAME]
    kana wp [--name NAME] -- ARGS...

Without --name the site is named after the current directory.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from kana.config import ConfigurationError, Settings, get_settings, validate_config_on_startup
from kana.schemas.site import SiteType
from kana.services.engine import EngineError
from kana.services.site import (
    CommandFailedError,
    PluginListError,
    SiteContext,
    SiteController,
    SiteNotRunningError,
)
from kana.services.verifier import VerificationError
from kana.validators import ValidationError


logger = logging.getLogger(__name__)


# Everything the core can raise that should end the command with a message.
HANDLED_ERRORS = (
    ConfigurationError,
    ValidationError,
    EngineError,
    CommandFailedError,
    SiteNotRunningError,
    PluginListError,
    VerificationError,
)


def run_start(controller: SiteController, args: argparse.Namespace) -> int:
    controller.start()
    controller.install()
    if controller.install_xdebug():
        print("Xdebug installed")
    controller.install_default_plugins()
    controller.open()
    print(f"Site {controller.identity.name} is running at {controller.get_url()}")
    return 0


def run_stop(controller: SiteController, args: argparse.Namespace) -> int:
    controller.stop()
    print(f"Site {controller.identity.name} stopped")
    return 0


def run_open(controller: SiteController, args: argparse.Namespace) -> int:
    controller.open()
    return 0


def run_status(controller: SiteController, args: argparse.Namespace) -> int:
    running = controller.is_running()
    print(f"Name: {controller.identity.name}")
    print(f"Status: {'running' if running else 'stopped'}")
    print(f"URL: {controller.get_url()}")
    print(f"Insecure URL: {controller.get_url(insecure=True)}")
    print(f"Directory: {controller.context.working_directory}")
    return 0


def run_plugins(controller: SiteController, args: argparse.Namespace) -> int:
    for plugin in controller.get_installed_plugins():
        print(plugin)
    return 0


def run_wp(controller: SiteController, args: argparse.Namespace) -> int:
    command = [part for part in args.wp_args if part != "--"]
    if not command:
        print("Usage: kana wp -- ARGS...", file=sys.stderr)
        return 2
    print(controller.run_wp_cli(command), end="")
    return 0


def start_overrides(args: argparse.Namespace) -> dict:
    overrides: dict = {
        "php": getattr(args, "php", None),
        "xdebug": True if getattr(args, "xdebug", False) else None,
        "local": True if getattr(args, "local", False) else None,
    }
    if getattr(args, "plugin", False):
        overrides["type"] = SiteType.PLUGIN
    elif getattr(args, "theme", False):
        overrides["type"] = SiteType.THEME
    return overrides


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kana",
        description="Local WordPress development environments on Docker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--name", "-n", default=None, help="Site name (default: current directory)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_start = subparsers.add_parser("start", parents=[common], help="Start the site")
    role = p_start.add_mutually_exclusive_group()
    role.add_argument("--plugin", action="store_true", help="Mount the current directory as a plugin")
    role.add_argument("--theme", action="store_true", help="Mount the current directory as a theme")
    p_start.add_argument("--local", action="store_true", help="Serve WordPress from ./wordpress")
    p_start.add_argument("--xdebug", action="store_true", help="Install and enable Xdebug")
    p_start.add_argument("--php", default=None, help="PHP version (e.g. 8.1)")
    p_start.set_defaults(handler=run_start)

    p_stop = subparsers.add_parser("stop", parents=[common], help="Stop the site")
    p_stop.set_defaults(handler=run_stop)

    p_open = subparsers.add_parser("open", parents=[common], help="Open the site in a browser")
    p_open.set_defaults(handler=run_open)

    p_status = subparsers.add_parser("status", parents=[common], help="Show site status")
    p_status.set_defaults(handler=run_status)

    p_plugins = subparsers.add_parser("plugins", parents=[common], help="List installed plugins")
    p_plugins.set_defaults(handler=run_plugins)

    p_wp = subparsers.add_parser("wp", parents=[common], help="Run a WP-CLI command")
    p_wp.add_argument("wp_args", nargs=argparse.REMAINDER)
    p_wp.set_defaults(handler=run_wp)

    return parser


def load_settings() -> Settings:
    """Read settings from the environment, reporting malformed values as configuration errors."""
    try:
        return get_settings()
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = load_settings()
        validate_config_on_startup(settings)
        logging.getLogger().setLevel(settings.log_level.upper())
        context = SiteContext.create(
            settings,
            Path.cwd(),
            name=args.name,
            overrides=start_overrides(args),
        )
        context.engine.ensure_daemon_available()
        return args.handler(SiteController(context), args)
    except HANDLED_ERRORS as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
