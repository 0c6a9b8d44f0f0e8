# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Main entrypoint when running the agent with ``python -m picoflare``.
"""

import sys
import logging
import asyncio
import argparse

from pathlib import Path

from .agent import Agent
from .config import load_settings

logger = logging.getLogger(__name__)

CLI_CONVERSATION = "cli"


def setup_logging(level: str) -> None:
    logging.captureWarnings(True)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def setup_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="picoflare")
    parser.add_argument("--workspace", "-w", type=str, default=None, help="Workspace root for file and shell tools")
    parser.add_argument("--data-dir", type=str, default=None, help="Where memory and usage stats are stored")
    parser.add_argument("--model", "-m", type=str, default=None, help="Default model identifier")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("chat", help="Interactive session")

    ask_parser = subparsers.add_parser("ask", help="Run a single turn and exit")
    ask_parser.add_argument("prompt", type=str, help="The message to send")

    return parser


async def print_completion(conversation_id: str, text: str) -> None:
    print(f"\n{text}\n", flush=True)


async def handle_command(agent: Agent, line: str) -> bool:
    """Run a slash command. Returns False when the REPL should exit."""
    command, _, arg = line.partition(" ")
    arg = arg.strip()

    if command in ("/quit", "/exit"):
        return False
    elif command == "/status":
        print(agent.status(CLI_CONVERSATION))
    elif command == "/model":
        if arg:
            await agent.set_model(CLI_CONVERSATION, "" if arg == "reset" else arg)
        print(f"Model: {agent.get_model(CLI_CONVERSATION)}")
    elif command == "/refresh":
        await agent.refresh_tools()
        await agent.refresh_session(CLI_CONVERSATION)
        print(f"Refreshed ({len(agent.registry)} tools).")
    elif command == "/tokens":
        print(agent.ledger.report() if agent.ledger else "No ledger configured.")
    else:
        print(f"Unknown command {command}. Try /status, /model, /refresh, /tokens or /quit.")
    return True


async def chat(agent: Agent) -> None:
    print("PicoFlare chat. /quit to exit.")
    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            break
        line = line.strip()
        if not line:
            continue
        if line.startswith("/"):
            if not await handle_command(agent, line):
                break
            continue
        reply = await agent.process_message(CLI_CONVERSATION, line)
        print(f"\n{reply}\n")


async def main() -> int:
    parser = setup_parser()
    args = parser.parse_args()

    overrides = {}
    if args.workspace:
        overrides["workspace"] = Path(args.workspace)
    if args.data_dir:
        overrides["data_dir"] = Path(args.data_dir)
    if args.model:
        overrides["model"] = args.model
    settings = load_settings(**overrides)
    setup_logging(settings.log_level)

    try:
        agent = Agent.from_settings(settings, on_subagent_complete=print_completion)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.command == "chat":
        await chat(agent)
    elif args.command == "ask":
        print(await agent.process_message(CLI_CONVERSATION, args.prompt))

    await agent.wait_for_background()
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
