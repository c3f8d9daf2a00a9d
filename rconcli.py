#!/usr/bin/env python3
from __future__ import annotations
import argparse, asyncio, logging, os, sys
from typing import Optional

from mc_rcon.errors import AuthenticationError, RconError
from mc_rcon.rcon import RconClient
from mc_rcon.util import RconSettings, load_settings, strip_formatting

# --- helpers -----------------------------------------------------------------

def _setup_logging(verbose: int) -> None:
    if verbose:
        level = logging.DEBUG if verbose > 1 else logging.INFO
    else:
        level = getattr(logging, os.environ.get("RCON_LOG_LEVEL", "WARNING").upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

def _settings(args) -> RconSettings:
    return load_settings(
        host=args.host, port=args.port, password=args.password,
        properties=args.properties, timeout=args.timeout,
    )

def _client(s: RconSettings) -> RconClient:
    return RconClient(s.host, s.port, s.password, timeout=s.timeout)

# --- exec / console / shell --------------------------------------------------

async def _exec(settings: RconSettings, commands: list[str], raw: bool) -> None:
    async with _client(settings) as client:
        for cmd in commands:
            out = await client.send(cmd)
            print(out if raw else strip_formatting(out), flush=True)

def do_exec(args):
    return asyncio.run(_exec(_settings(args), args.commands, args.raw))

def do_console(args):
    """Opens the prompt_toolkit RCON console with response pane + input bar."""
    settings = _settings(args)
    try:
        from mc_rcon.rcon_ui import run_rcon_ui
    except ImportError as e:
        print(f"prompt_toolkit UI not available ({e}); falling back to plain RCON.", flush=True)
        return do_shell(args)

    try:
        asyncio.run(run_rcon_ui(settings))
    except KeyboardInterrupt:
        pass

async def _shell(settings: RconSettings) -> int:
    from mc_rcon.console import ConsoleSession
    session = ConsoleSession(settings, emit=lambda t: print(t, end="", flush=True))
    if not await session.connect():
        return 1
    print("Interactive RCON. Type /help for built-ins, /quit to exit.")
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            if not await session.handle_line(line):
                break
    finally:
        session.disconnect()
    return 0

def do_shell(args):
    try:
        return asyncio.run(_shell(_settings(args)))
    except KeyboardInterrupt:
        return 0

# --- argparse ----------------------------------------------------------------

def build_parser():
    p = argparse.ArgumentParser(prog="rconcli", description="Minecraft RCON client.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="-v info, -vv debug logging")
    p.add_argument("--host", help="Server host (env RCON_HOST, default 127.0.0.1)")
    p.add_argument("--port", type=int, help="RCON port (env RCON_PORT, rcon.port, default 25575)")
    p.add_argument("--password", help="RCON password (env RCON_PASSWORD, rcon.password)")
    p.add_argument("--properties", help="Read rcon.port/rcon.password from this server.properties")
    p.add_argument("--timeout", type=float, help="Per-command timeout in seconds (env RCON_TIMEOUT)")
    sub = p.add_subparsers(dest="cmd", required=True)

    pe = sub.add_parser("exec", help="Run one or more commands and print the responses")
    pe.add_argument("commands", nargs="+")
    pe.add_argument("--raw", action="store_true", help="Keep § formatting codes")
    pe.set_defaults(func=do_exec)

    sub.add_parser("console", help="Open RCON console (prompt_toolkit)").set_defaults(func=do_console)
    sub.add_parser("shell", help="Plain line-mode RCON console").set_defaults(func=do_shell)

    return p

def main(argv: Optional[list[str]] = None):
    argv = argv if argv is not None else sys.argv[1:]
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    try:
        return args.func(args)
    except AuthenticationError as e:
        print(f"[rcon] {e}", file=sys.stderr)
        return 2
    except (RconError, ValueError) as e:
        print(f"[rcon error] {e}", file=sys.stderr)
        return 1

if __name__ == "__main__":
    raise SystemExit(main())
