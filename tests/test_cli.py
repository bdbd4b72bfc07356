"""Tests for argument parsing and command dispatch."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from kana import cli
from kana.config import Settings
from kana.schemas.site import SiteType
from kana.services.engine import DaemonUnavailableError


@pytest.fixture
def controller():
    controller = MagicMock()
    controller.identity.name = "demo"
    controller.get_url.side_effect = lambda insecure=False: (
        "http://demo.sites.kana.li/" if insecure else "https://demo.sites.kana.li/"
    )
    return controller


class TestParser:
    def test_start_flags(self):
        args = cli.build_parser().parse_args(["start", "--plugin", "--xdebug", "--php", "7.4"])
        assert args.handler is cli.run_start
        assert cli.start_overrides(args) == {
            "php": "7.4",
            "xdebug": True,
            "local": None,
            "type": SiteType.PLUGIN,
        }

    def test_plugin_and_theme_are_exclusive(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["start", "--plugin", "--theme"])

    def test_unset_flags_are_none(self):
        args = cli.build_parser().parse_args(["stop", "--name", "demo"])
        assert args.name == "demo"
        assert cli.start_overrides(args) == {"php": None, "xdebug": None, "local": None}

    def test_wp_collects_remaining_args(self):
        args = cli.build_parser().parse_args(["wp", "--", "plugin", "list", "--status=active"])
        assert args.handler is cli.run_wp
        assert args.wp_args[-3:] == ["plugin", "list", "--status=active"]

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestHandlers:
    def test_start_runs_full_sequence(self, controller, capsys):
        controller.install_xdebug.return_value = False

        assert cli.run_start(controller, MagicMock()) == 0

        controller.start.assert_called_once()
        controller.install.assert_called_once()
        controller.install_default_plugins.assert_called_once()
        controller.open.assert_called_once()
        assert "https://demo.sites.kana.li/" in capsys.readouterr().out

    def test_status(self, controller, capsys):
        controller.is_running.return_value = True

        assert cli.run_status(controller, MagicMock()) == 0

        out = capsys.readouterr().out
        assert "Status: running" in out
        assert "Insecure URL: http://demo.sites.kana.li/" in out

    def test_plugins(self, controller, capsys):
        controller.get_installed_plugins.return_value = ["query-monitor", "debug-bar"]

        cli.run_plugins(controller, MagicMock())

        assert capsys.readouterr().out.splitlines() == ["query-monitor", "debug-bar"]

    def test_wp_strips_separator(self, controller, capsys):
        controller.run_wp_cli.return_value = "ok\n"
        args = MagicMock(wp_args=["--", "option", "get", "home"])

        assert cli.run_wp(controller, args) == 0

        controller.run_wp_cli.assert_called_once_with(["option", "get", "home"])
        assert capsys.readouterr().out == "ok\n"

    def test_wp_without_args(self, controller):
        assert cli.run_wp(controller, MagicMock(wp_args=["--"])) == 2
        controller.run_wp_cli.assert_not_called()


class TestMain:
    def test_dispatches_to_handler(self, settings, tmp_path):
        context = MagicMock()
        with patch.object(cli, "get_settings", return_value=settings), \
                patch.object(cli.Path, "cwd", return_value=tmp_path), \
                patch.object(cli.SiteContext, "create", return_value=context) as create, \
                patch.object(cli, "SiteController") as controller_cls:
            controller_cls.return_value.is_running.return_value = False
            assert cli.main(["status", "--name", "demo"]) == 0

        create.assert_called_once()
        assert create.call_args.kwargs["name"] == "demo"
        context.engine.ensure_daemon_available.assert_called_once()

    def test_handled_error_returns_one(self, settings, tmp_path, capsys):
        context = MagicMock()
        context.engine.ensure_daemon_available.side_effect = DaemonUnavailableError("Docker is down")
        with patch.object(cli, "get_settings", return_value=settings), \
                patch.object(cli.Path, "cwd", return_value=tmp_path), \
                patch.object(cli.SiteContext, "create", return_value=context):
            assert cli.main(["stop"]) == 1

        assert "Docker is down" in capsys.readouterr().err

    def test_invalid_config_returns_one(self, settings, capsys):
        settings = settings.model_copy(update={"verify_attempts": 0})
        with patch.object(cli, "get_settings", return_value=settings):
            assert cli.main(["status"]) == 1

        assert "KANA_VERIFY_ATTEMPTS" in capsys.readouterr().err

    def test_malformed_environment_returns_one(self, monkeypatch, capsys):
        monkeypatch.setenv("KANA_VERIFY_ATTEMPTS", "abc")
        with patch.object(cli, "get_settings", side_effect=lambda: Settings(_env_file=None)):
            assert cli.main(["status"]) == 1

        assert "Invalid configuration" in capsys.readouterr().err
