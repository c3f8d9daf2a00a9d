"""Tests for the rconcli entry point."""

from __future__ import annotations

import pytest

import rconcli
from mc_rcon.errors import AuthenticationError, RconTimeoutError
from mc_rcon.util import RconSettings


def test_parser_exec_arguments():
    args = rconcli.build_parser().parse_args(
        ["--host", "mc.example.com", "--port", "25580", "exec", "list", "say hi", "--raw"]
    )
    assert args.func is rconcli.do_exec
    assert args.commands == ["list", "say hi"]
    assert args.raw is True
    assert rconcli._settings(args).address == "mc.example.com:25580"


def test_parser_requires_subcommand():
    with pytest.raises(SystemExit):
        rconcli.build_parser().parse_args([])


@pytest.mark.asyncio
async def test_exec_prints_each_response(fake_server, capsys):
    async with fake_server(responses={"list": "§aThere are 0 players"}) as server:
        settings = RconSettings(port=server.port, password="secret", timeout=1.0)
        await rconcli._exec(settings, ["list", "say hi"], raw=False)
    assert capsys.readouterr().out == "There are 0 players\nsay hi\n"


@pytest.mark.parametrize(
    ("exc", "code"),
    [(AuthenticationError("RCON auth failed"), 2), (RconTimeoutError("command 'list'", 1.0), 1)],
)
def test_main_maps_errors_to_exit_codes(monkeypatch, capsys, exc, code):
    def fail(args):
        raise exc

    monkeypatch.setattr(rconcli, "do_exec", fail)
    assert rconcli.main(["exec", "list"]) == code
    assert str(exc) in capsys.readouterr().err
