"""
Main entry point for promptkit.
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from rich.console import Console
from rich.markup import escape

from .constants import APP_NAME, APP_VERSION, APP_DESCRIPTION, DEFAULT_MAX_RETRIES
from .errors import PromptError
from .logging_setup import setup_logging


def _add_var_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--var",
        action="append",
        metavar="NAME=VALUE",
        help="Template variable (repeatable)"
    )


def _add_model_arguments(parser: argparse.ArgumentParser, max_retries_default: Optional[int]) -> None:
    parser.add_argument(
        "-s", "--system",
        type=str,
        help="System prompt"
    )
    parser.add_argument(
        "--temperature",
        type=float,
        help="Sampling temperature (0.0-2.0)"
    )
    parser.add_argument(
        "--max-tokens",
        type=int,
        help="Maximum tokens in the response"
    )
    parser.add_argument(
        "--preset",
        choices=["code", "creative", "extract", "summarize"],
        help="Start from a parameter preset"
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=max_retries_default,
        help="Retries for transient failures"
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description=APP_DESCRIPTION
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"{APP_NAME} {APP_VERSION}"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    parser.add_argument(
        "--log-file",
        type=str,
        help="Also write logs to this file"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="Send a single prompt")
    ask.add_argument("prompt", help="Prompt text")
    _add_model_arguments(ask, DEFAULT_MAX_RETRIES)

    chat = sub.add_parser("chat", help="Interactive multi-turn chat")
    _add_model_arguments(chat, DEFAULT_MAX_RETRIES)
    chat.add_argument(
        "--context-model",
        type=str,
        metavar="MODEL",
        help="Trim history to fit this model's context window"
    )

    render = sub.add_parser("render", help="Render a template file")
    render.add_argument("template", help="Template JSON file")
    _add_var_argument(render)
    render.add_argument(
        "--lenient",
        action="store_true",
        help="Leave unresolved placeholders instead of failing"
    )

    analyze = sub.add_parser("analyze", help="Score a prompt and check it for injection")
    analyze.add_argument("prompt", nargs="?", help="Prompt text")
    analyze.add_argument(
        "-f", "--file",
        type=str,
        help="Read the prompt from this file"
    )
    analyze.add_argument(
        "--token-limit",
        type=int,
        help="Flag prompts estimated above this many tokens"
    )
    analyze.add_argument(
        "--json",
        action="store_true",
        help="Print the analysis as JSON"
    )

    validate = sub.add_parser("validate", help="Check a chain file for missing variables")
    validate.add_argument("chain", help="Chain JSON file")
    _add_var_argument(validate)

    run = sub.add_parser("run", help="Run a chain file")
    run.add_argument("chain", help="Chain JSON file")
    _add_var_argument(run)
    _add_model_arguments(run, None)
    run.add_argument(
        "-o", "--output",
        type=str,
        help="Write the run result JSON to this file"
    )

    library = sub.add_parser("library", help="Browse the prompt library")
    library.add_argument("action", nargs="?", choices=["list", "show"], default="list")
    library.add_argument("name", nargs="?", help="Entry name for 'show'")
    library.add_argument(
        "-f", "--file",
        type=str,
        help="Library JSON file (built-in prompts by default)"
    )

    return parser


def dispatch(args: argparse.Namespace, console: Console) -> int:
    """Run the handler for the parsed subcommand."""
    from . import cli

    if args.command == "ask":
        return asyncio.run(cli.cmd_ask(args, console))
    if args.command == "chat":
        return asyncio.run(cli.cmd_chat(args, console))
    if args.command == "render":
        return cli.cmd_render(args, console)
    if args.command == "analyze":
        return cli.cmd_analyze(args, console)
    if args.command == "validate":
        return cli.cmd_validate(args, console)
    if args.command == "run":
        return asyncio.run(cli.cmd_run(args, console))
    if args.command == "library":
        return cli.cmd_library(args, console)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    console = Console()
    error_console = Console(stderr=True)

    setup_logging(
        logging.DEBUG if args.verbose else logging.WARNING,
        args.log_file,
        console=error_console,
    )

    try:
        return dispatch(args, console)
    except PromptError as e:
        error_console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
        return 1
    except (KeyError, FileNotFoundError) as e:
        message = e.args[0] if isinstance(e, KeyError) and e.args else e
        error_console.print(f"[red]Error:[/red] {escape(str(message))}", highlight=False)
        return 1
    except KeyboardInterrupt:
        error_console.print("\nInterrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
