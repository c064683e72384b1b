#!/usr/bin/env python3
"""
Cloud Atlas - Flow Composition Engine

Main entry point for Cloud Atlas. Runs flows on notes, canvas flows and
interactive sessions against a vault of markdown files.
"""

import asyncio
import logging
import sys
import argparse

from cloudatlas.config import ConfigManager
from cloudatlas.constants import EXAMPLE_FLOW
from cloudatlas.database import RunLedger
from cloudatlas.dispatch import create_dispatcher
from cloudatlas.flows import FlowEngine, InteractiveSession, flow_template_path, list_flows
from cloudatlas.canvas import CanvasRunner
from cloudatlas.notices import Notifier
from cloudatlas.vault import FilesystemVault


def setup_logging(config: ConfigManager):
    """Configure logging for the application."""
    level = getattr(logging, config.get("logging.level", "INFO").upper())
    format_str = config.get("logging.format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = config.log_filename

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=format_str, handlers=handlers)


def print_notice(message: str):
    print(f"\n[Cloud Atlas] {message}")


def build_engine(config: ConfigManager, run_ledger: RunLedger) -> FlowEngine:
    """Wire a flow engine from the loaded configuration."""
    settings = config.to_settings()
    vault = FilesystemVault(config.vault_path)
    return FlowEngine(
        vault,
        settings,
        dispatcher=create_dispatcher(settings),
        run_ledger=run_ledger,
        notifier=Notifier(print_notice),
    )


async def run_flow_command(engine: FlowEngine, flow: str, note: str, selection: str | None) -> int:
    try:
        result = await engine.execute(flow, note, selection)
    finally:
        await engine.dispatcher.aclose()

    if result is None:
        return 1

    print(result.response)
    for delegated in result.delegated:
        print(f"\n--- {delegated.flow} ---\n{delegated.response}")
    return 0


async def run_canvas_command(engine: FlowEngine, canvas: str) -> int:
    try:
        responses = await CanvasRunner(engine).run(canvas)
    finally:
        await engine.dispatcher.aclose()

    print(f"Added {len(responses)} response(s) to {canvas}")
    return 0 if responses else 1


async def run_chat_command(engine: FlowEngine, attachments: list) -> int:
    session = InteractiveSession(engine)
    for identifier in attachments:
        session.attach(identifier)

    print("Type a prompt and press enter. An empty line ends the session.")
    try:
        while True:
            prompt = input("> ")
            if not prompt.strip():
                break
            print(await session.send(prompt))
    finally:
        await engine.dispatcher.aclose()
    return 0


def show_flows(config: ConfigManager) -> int:
    settings = config.to_settings()
    flows = list_flows(FilesystemVault(config.vault_path), settings.flows_folder)
    if not flows:
        print(f"No flows found in {settings.flows_folder}/")
    for flow in flows:
        print(flow)
    return 0


def show_history(run_ledger: RunLedger, flow: str | None, limit: int) -> int:
    runs = run_ledger.get_flow_runs(flow=flow, limit=limit)
    for run in runs:
        status = "ok" if run["success"] else f"failed: {run['error_message']}"
        print(f"{run['run_id']:>5}  {run['called_at']}  {run['request_id']}  "
              f"{run['flow'] or '-'}  {run['source'] or '-'}  {run['execution_time_ms']}ms  {status}")
    if not runs:
        print("No recorded runs.")
    return 0


def init_flow(config: ConfigManager, name: str) -> int:
    settings = config.to_settings()
    vault = FilesystemVault(config.vault_path)
    target = flow_template_path(settings.flows_folder, name)

    if vault.exists(target):
        print(f"Flow already exists: {target}")
        return 1

    vault.write(target, EXAMPLE_FLOW)
    print(f"Created example flow: {target}")
    return 0


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Cloud Atlas - Flow Composition Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py flows                                # List available flows
  python main.py run summarize Notes/Meeting.md       # Run a flow on a note
  python main.py run - Notes/Meeting.summarize.flowrun.md   # Re-run from a flow run file
  python main.py canvas Boards/Research.flow.canvas   # Run a canvas flow
  python main.py history --flow summarize             # Show recorded runs
        """
    )

    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Path to the configuration file (default: config.yaml)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="Cloud Atlas 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a flow on a note")
    run_parser.add_argument("flow", help="Flow name, or '-' to take it from a flow run file")
    run_parser.add_argument("note", help="Vault path of the note")
    run_parser.add_argument("--selection", help="Use this text as input instead of the note body")

    canvas_parser = subparsers.add_parser("canvas", help="Run a canvas flow")
    canvas_parser.add_argument("canvas", help="Vault path of the .flow.canvas file")

    chat_parser = subparsers.add_parser("chat", help="Start an interactive session")
    chat_parser.add_argument("--attach", action="append", default=[],
                             help="Vault path of a note to attach (repeatable)")

    subparsers.add_parser("flows", help="List available flows")

    history_parser = subparsers.add_parser("history", help="Show recorded runs")
    history_parser.add_argument("--flow", help="Only show runs of this flow")
    history_parser.add_argument("--limit", type=int, default=20, help="Number of runs to show (default: 20)")

    init_parser = subparsers.add_parser("init", help="Create an example flow")
    init_parser.add_argument("name", nargs="?", default="example", help="Flow name (default: example)")

    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_arguments()
    config = ConfigManager(args.config)
    setup_logging(config)

    logging.info(f"Cloud Atlas - command: {args.command}")

    if args.command == "flows":
        sys.exit(show_flows(config))
    if args.command == "init":
        sys.exit(init_flow(config, args.name))

    try:
        with RunLedger(config.database_filename) as run_ledger:
            if args.command == "history":
                exit_code = show_history(run_ledger, args.flow, args.limit)
            else:
                engine = build_engine(config, run_ledger)
                if args.command == "run":
                    flow = None if args.flow == "-" else args.flow
                    exit_code = asyncio.run(run_flow_command(engine, flow, args.note, args.selection))
                elif args.command == "canvas":
                    exit_code = asyncio.run(run_canvas_command(engine, args.canvas))
                else:
                    exit_code = asyncio.run(run_chat_command(engine, args.attach))

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        print("\nInterrupted.")
        exit_code = 130

    except Exception as e:
        logging.error(f"Command failed: {e}")
        print(f"\nCommand failed: {e}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
