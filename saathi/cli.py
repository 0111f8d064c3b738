#!/usr/bin/env python3
"""
Saathi CLI — a calm companion, one command away.

Every command has a short name and standard aliases:

    COMMAND     ALIASES               WHAT IT DOES
    -------     -------               ----------------------------------
    serve       start, up             Start the chat proxy server
    talk        chat, tui             Chat with Saathi (Textual UI, or --plain)
    ring        status, ping, health  Ping a running proxy
    history     log                   Print the stored conversation
    forget      clear, reset          Clear the stored conversation
    tone        banner                Print the Saathi banner
"""

import argparse
import asyncio

from saathi import __version__

BANNER = r"""
    ╔══════════════════════════════════════════════╗
    ║                                              ║
    ║   ███████  █████   █████  ████████ ██   ██   ║
    ║   ██      ██   ██ ██   ██    ██    ██   ██   ║
    ║   ███████ ███████ ███████    ██    ███████   ║
    ║        ██ ██   ██ ██   ██    ██    ██   ██   ║
    ║   ███████ ██   ██ ██   ██    ██    ██   ██   ║
    ║                                              ║
    ║   You are not alone.            v""" + __version__ + r"""        ║
    ║                                              ║
    ╚══════════════════════════════════════════════╝
"""


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """Start the Saathi proxy server."""
    import uvicorn
    from saathi.config import get_config

    cfg = get_config()
    host = args.host or cfg["server"]["host"]
    port = args.port or cfg["server"]["port"]

    print(BANNER)
    print(f"  Listening on {host}:{port}")
    print(f"  Gateway: {cfg['gateway']['url']}")
    print(f"  Model: {cfg['gateway']['model']}")
    if not cfg["gateway"].get("api_key"):
        print(f"  ⚠  {cfg['gateway'].get('api_key_env', 'LOVABLE_API_KEY')} is not set — /chat will answer 500")
    print()

    uvicorn.run(
        "saathi.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def _build_session(args):
    from saathi.client.session import ChatSession

    session = ChatSession.from_config(storage_path=args.storage)
    if args.url:
        session.proxy_url = args.url
    if args.lang:
        session.set_language(args.lang)
    return session


def cmd_talk(args):
    """Chat with Saathi."""
    session = _build_session(args)
    if args.plain:
        try:
            asyncio.run(_plain_repl(session))
        except (KeyboardInterrupt, EOFError):
            print()
        return

    from saathi.tui.app import run_tui
    run_tui(session)


async def _plain_repl(session):
    """Line-mode chat: replies are printed as their deltas arrive."""
    from saathi.languages import get_profile

    printed: dict[str, int] = {}

    def on_change(message):
        if message is None or message.role != "assistant":
            return
        done = printed.get(message.id, 0)
        if len(message.content) > done:
            if done == 0:
                print("  saathi ◀ ", end="")
            print(message.content[done:], end="", flush=True)
            printed[message.id] = len(message.content)

    def notify(severity, text):
        print(f"\n  {'⚠' if severity == 'warning' else '✗'}  {text}")

    session.notify = notify
    session.transcript.add_listener(on_change)

    profile = get_profile(session.language)
    print(f"  ☎  {profile.emergency_notice}")
    print("  /clear resets the chat, /lang <code> switches language, /quit leaves.")
    print()
    for message in session.transcript:
        who = "you ▶" if message.role == "user" else "saathi ◀"
        print(f"  {who} {message.content}")
        printed[message.id] = len(message.content)

    while True:
        text = await asyncio.to_thread(input, "\n  you ▶ ")
        command = text.strip()
        if command in ("/quit", "/exit"):
            return
        if command == "/clear":
            await session.clear()
            print(f"  saathi ◀ {session.transcript.messages[0].content}")
            printed[session.transcript.messages[0].id] = len(session.transcript.messages[0].content)
            continue
        if command.startswith("/lang"):
            code = session.set_language(command[5:].strip())
            print(f"  ✓  language: {get_profile(code).name}")
            continue
        try:
            await session.submit(text)
        except asyncio.CancelledError:
            session.cancel()
            raise
        print()


def cmd_ring(args):
    """Ping a running Saathi proxy."""
    import httpx

    url = (args.url or "http://localhost:8000").rstrip("/")
    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        if resp.status_code == 200:
            data = resp.json()
            print(f"  ☎  {url} is UP (v{data.get('version', '?')})")
            print(f"  🧠 Model: {data.get('model', '?')}")
            print(f"  🔑 Gateway credential: {'present' if data.get('credential') else 'MISSING'}")
        else:
            print(f"  ✗  No answer — got HTTP {resp.status_code}")
    except httpx.ConnectError:
        print(f"  ✗  Nothing listening at {url}")
    except httpx.HTTPError as e:
        print(f"  ✗  Error: {e}")


def cmd_history(args):
    """Print the stored conversation."""
    from saathi.client.session import ChatSession

    session = ChatSession.from_config(storage_path=args.storage)
    for message in session.transcript:
        stamp = message.created_at.astimezone().strftime("%Y-%m-%d %H:%M")
        who = "you" if message.role == "user" else "saathi"
        print(f"  [{stamp}] {who}: {message.content}")


def cmd_forget(args):
    """Clear the stored conversation."""
    from saathi.client.session import ChatSession

    session = ChatSession.from_config(storage_path=args.storage)
    session.transcript.reset(args.lang)
    print("  ✓  Conversation cleared.")


def cmd_tone(args):
    """Print the banner."""
    print(BANNER)


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under multiple names."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="saathi",
        description="Saathi — a calm mental wellness companion.",
        epilog=(
            "Each command has standard aliases.\n"
            "Example: 'saathi talk' and 'saathi chat' do the same thing.\n"
            "Run 'saathi <command> --help' for command-specific options."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"saathi {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_serve(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["serve", "start", "up"],
                 "Start the Saathi proxy server", cmd_serve, setup_serve)

    def setup_client(p):
        p.add_argument("--url", "-u", default=None, help="Proxy /chat URL (default: from config)")
        p.add_argument("--lang", "-l", default=None, help="Language code (en, hi)")
        p.add_argument("--storage", default=None, help="Path to the local storage file")

    def setup_talk(p):
        setup_client(p)
        p.add_argument("--plain", action="store_true", help="Line-mode chat instead of the TUI")

    _add_command(sub, ["talk", "chat", "tui"],
                 "Chat with Saathi", cmd_talk, setup_talk)

    def setup_ring(p):
        p.add_argument("--url", "-u", default=None, help="Saathi URL (default: http://localhost:8000)")

    _add_command(sub, ["ring", "status", "ping", "health"],
                 "Ping a running Saathi proxy", cmd_ring, setup_ring)

    _add_command(sub, ["history", "log"],
                 "Print the stored conversation", cmd_history, setup_client)

    _add_command(sub, ["forget", "clear", "reset"],
                 "Clear the stored conversation", cmd_forget, setup_client)

    _add_command(sub, ["tone", "banner"],
                 "Print the Saathi banner", cmd_tone)

    args = parser.parse_args(argv)
    if not args.command:
        cmd_tone(args)
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
