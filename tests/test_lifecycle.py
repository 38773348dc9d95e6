"""Tests for the appcmd-backed site and app pool controllers."""

from unittest.mock import MagicMock

import pytest

from webdeploy.services.lifecycle import AppcmdController, UnitState, get_lifecycle_controllers
from webdeploy.services.shell_service import CommandResult, ShellService


def _shell(*results):
    shell = MagicMock(spec=ShellService)
    shell.exec_command.side_effect = list(results)
    return shell


class TestUnitState:
    @pytest.mark.parametrize(
        "state,running",
        [
            (UnitState.started, True),
            (UnitState.starting, True),
            (UnitState.stopped, False),
            (UnitState.stopping, False),
            (UnitState.unknown, False),
        ],
    )
    def test_is_running(self, state, running):
        assert state.is_running is running


class TestAppcmdController:
    def test_rejects_unknown_kind(self):
        with pytest.raises(ValueError, match="Unsupported unit kind"):
            AppcmdController(MagicMock(), "vdir")

    def test_get_state_parses_output(self):
        shell = _shell(CommandResult(0, "Started\r\n", ""))
        ctrl = AppcmdController(shell, "site", appcmd_path="appcmd")

        assert ctrl.get_state("Default Web Site") == UnitState.started
        shell.exec_command.assert_called_once_with(
            '"appcmd" list site /name:"Default Web Site" /text:state', timeout=30
        )

    def test_get_state_unknown_on_failure_or_garbage(self):
        ctrl = AppcmdController(
            _shell(CommandResult(1, "", "ERROR"), CommandResult(0, "weird", "")), "apppool", appcmd_path="appcmd"
        )
        assert ctrl.get_state("Pool") == UnitState.unknown
        assert ctrl.get_state("Pool") == UnitState.unknown

    def test_stop_issues_command_when_running(self):
        shell = _shell(CommandResult(0, "Started", ""), CommandResult(0, "", ""))
        ctrl = AppcmdController(shell, "apppool", appcmd_path="appcmd")

        assert ctrl.stop("ShopPool") is True
        assert shell.exec_command.call_args_list[1].args[0] == '"appcmd" stop apppool /apppool.name:"ShopPool"'

    def test_stop_is_idempotent(self):
        shell = _shell(CommandResult(0, "Stopped", ""))
        ctrl = AppcmdController(shell, "site", appcmd_path="appcmd")

        assert ctrl.stop("Shop") is True
        assert shell.exec_command.call_count == 1

    def test_start_is_idempotent(self):
        shell = _shell(CommandResult(0, "Starting", ""))
        ctrl = AppcmdController(shell, "site", appcmd_path="appcmd")

        assert ctrl.start("Shop") is True
        assert shell.exec_command.call_count == 1

    def test_start_reports_failure(self):
        shell = _shell(CommandResult(0, "Stopped", ""), CommandResult(1, "", "access denied"))
        ctrl = AppcmdController(shell, "site", appcmd_path="appcmd")

        assert ctrl.start("Shop") is False
        assert shell.exec_command.call_args_list[1].args[0] == '"appcmd" start site /site.name:"Shop"'

    @pytest.mark.parametrize("name", ["", 'Shop" & del C:\\', "a;b", "x" * 201])
    def test_unsafe_names_are_rejected(self, name):
        shell = _shell()
        ctrl = AppcmdController(shell, "site", appcmd_path="appcmd")
        with pytest.raises(ValueError, match="Invalid unit name"):
            ctrl.get_state(name)
        shell.exec_command.assert_not_called()


def test_factory_shares_one_shell():
    site, pool = get_lifecycle_controllers()
    assert site.kind == "site"
    assert pool.kind == "apppool"
    assert site.shell is pool.shell
    assert site.shell.is_local is True
