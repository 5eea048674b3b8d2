#!/usr/bin/env python3
"""
aide-de-camp CLI: a terminal front-end for the assistant.

Every command has a short name and standard aliases:

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    chat            talk            Interactive chat (streams replies)
    history         log             Print the saved conversation
    webhook         set-webhook     Save the webhook URL preference
    flash           info, config    Show effective settings at a glance

Inside chat:  /retry  /new  /flight  /quit
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from aidedecamp import __version__

BANNER = f"""
    ┌──────────────────────────────────────────┐
    │  aide-de-camp  v{__version__:<25}│
    │  meals · workouts · expenses             │
    └──────────────────────────────────────────┘
"""


def setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


# ---------------------------------------------------------------------------
# Streaming printer
# ---------------------------------------------------------------------------

class StreamPrinter:
    """Prints only the new tail of each full-text snapshot."""

    def __init__(self, out=sys.stdout):
        self.out = out
        self._printed = ""

    def reset(self):
        self._printed = ""

    def on_tick(self, context: dict):
        text = context.get("text", "")
        if text.startswith(self._printed):
            self.out.write(text[len(self._printed):])
        else:
            # A follow-up turn replaced the text
            self.out.write("\n  ◀ " + text)
        self._printed = text
        self.out.flush()

    def on_error(self, context: dict):
        self.out.write(f"\n  ✗ {context.get('text', '')}")
        self.out.flush()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def _chat_loop(orchestrator, printer: StreamPrinter):
    while True:
        try:
            line = (await asyncio.to_thread(input, "  ▶ ")).strip()
        except EOFError:
            break
        if not line:
            continue

        if line in ("/quit", "/exit", "/q"):
            break
        if line == "/new":
            orchestrator.new_session()
            print("  [new session]\n")
            continue
        if line == "/flight":
            recent = orchestrator.recorder.recent(1) if orchestrator.recorder else []
            print(recent[0].render_text() if recent else "  (no turns recorded)")
            print()
            continue

        printer.reset()
        print("  ◀ ", end="", flush=True)
        if line == "/retry":
            sent = await orchestrator.retry()
            if not sent:
                print("nothing to retry", end="")
        else:
            sent = await orchestrator.send(line)
        if not sent and orchestrator.alert_message:
            print(f"⚠ {orchestrator.alert_message}", end="")
        print("\n")


def cmd_chat(args):
    """Interactive chat session."""
    from aidedecamp.config import get_config
    from aidedecamp.orchestrator import TurnOrchestrator

    cfg = get_config()
    setup_logging(cfg)

    orchestrator = TurnOrchestrator.from_config(cfg)
    printer = StreamPrinter()
    orchestrator.hooks.register("terminal", on_tick=printer.on_tick, on_error=printer.on_error)

    print(BANNER)
    if args.new:
        orchestrator.new_session()
    elif orchestrator.messages:
        print(f"  Restored {len(orchestrator.messages)} messages. /new starts over.\n")

    try:
        asyncio.run(_chat_loop(orchestrator, printer))
    except KeyboardInterrupt:
        pass
    print("  [bye]")


def cmd_history(args):
    """Print the persisted conversation."""
    from aidedecamp.config import get_config
    from aidedecamp.storage.snapshot import SnapshotStore

    cfg = get_config()
    path = args.path or cfg["conversation"]["snapshot_path"]
    messages = SnapshotStore(path).load()
    if not messages:
        print("  (no saved conversation)")
        return
    for msg in messages[-args.last:]:
        icon = "▶" if msg.is_from_user else "◀"
        print(f"  {msg.timestamp.astimezone():%Y-%m-%d %H:%M} {icon} {msg.text}")


def cmd_webhook(args):
    """Save the webhook URL preference."""
    from aidedecamp.settings import Settings

    settings = Settings.load()
    settings.webhook_url = args.url
    if not settings.save():
        print("  ✗ Could not write runtime_config.yaml")
        sys.exit(1)
    print(f"  ✓ Webhook URL saved: {args.url}")


def cmd_flash(args):
    """Show effective settings."""
    from aidedecamp.config import get_config
    from aidedecamp.settings import Settings

    cfg = get_config()
    settings = Settings.load()
    print(BANNER)
    print(f"  Endpoint:     {cfg['openai']['endpoint']}")
    print(f"  Model:        {cfg['openai']['model']}")
    print(f"  API key:      {settings.masked_key or '(missing)'}")
    print(f"  Webhook:      {settings.webhook_url or '(missing)'}")
    print(f"  Retries:      {cfg['openai']['max_retries']}")
    print(f"  Max messages: {cfg['conversation']['max_messages']}")
    print(f"  Snapshot:     {cfg['conversation']['snapshot_path']}")
    if not settings.is_valid():
        print(f"\n  ⚠ {settings.missing_message()}")


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


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aidedecamp",
        description="aide-de-camp: log meals, workouts and expenses by chatting.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"aidedecamp {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_chat(p):
        p.add_argument("--new", action="store_true", help="Start with an empty session")

    _add_command(sub, ["chat", "talk"], "Interactive chat", cmd_chat, setup_chat)

    def setup_history(p):
        p.add_argument("--path", default=None, help="Snapshot file (default: from config)")
        p.add_argument("--last", "-n", type=int, default=30, help="Show last N messages")

    _add_command(sub, ["history", "log"], "Print the saved conversation", cmd_history, setup_history)

    def setup_webhook(p):
        p.add_argument("url", help="Webhook endpoint URL")

    _add_command(sub, ["webhook", "set-webhook"], "Save the webhook URL", cmd_webhook, setup_webhook)

    _add_command(sub, ["flash", "info", "config"], "Show effective settings", cmd_flash)
    return parser


def main(argv: list[str] | None = None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        print(BANNER)
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
