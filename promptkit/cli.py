"""
Command handlers for the promptkit command line.
Each handler takes the parsed arguments and a rich Console and returns an
exit status.
"""
import argparse
from typing import Callable, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.table import Table

from . import guard
from .budget import DEFAULT_RESERVE_FOR_RESPONSE, TokenBudget
from .chain import PromptChain, StepResult
from .client import get_response
from .conversation import Conversation
from .errors import InvalidArgumentError
from .library import PromptLibrary
from .llm.azure_openai import AzureOpenAISender
from .llm.base import LLMSender
from .options import PromptOptions
from .serialization import read_text_file, write_text_file
from .template import PromptTemplate


PRESETS: dict[str, Callable[[], PromptOptions]] = {
    "code": PromptOptions.for_code_generation,
    "creative": PromptOptions.for_creative_writing,
    "extract": PromptOptions.for_data_extraction,
    "summarize": PromptOptions.for_summarization,
}

CHAT_HELP = "Commands: /clear, /save PATH, /quit"


def parse_variables(pairs: Optional[list[str]]) -> dict[str, str]:
    """Turn ["k=v", ...] into a mapping; the value may contain '='."""
    variables: dict[str, str] = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise InvalidArgumentError(f"Invalid --var '{pair}', expected NAME=VALUE")
        variables[name.strip()] = value
    return variables


def build_options(args: argparse.Namespace) -> Optional[PromptOptions]:
    """Build PromptOptions from --preset, --temperature and --max-tokens."""
    preset = getattr(args, "preset", None)
    temperature = getattr(args, "temperature", None)
    max_tokens = getattr(args, "max_tokens", None)

    if preset is None and temperature is None and max_tokens is None:
        return None

    options = PRESETS[preset]() if preset else PromptOptions()
    if temperature is not None:
        options.temperature = temperature
    if max_tokens is not None:
        options.max_tokens = max_tokens
    return options


def _open_sender(sender: Optional[LLMSender]) -> LLMSender:
    return sender if sender is not None else AzureOpenAISender.from_env()


async def cmd_ask(args: argparse.Namespace, console: Console, sender: Optional[LLMSender] = None) -> int:
    """Send a single prompt and print the reply."""
    reply = await get_response(
        args.prompt,
        args.system,
        max_retries=args.max_retries,
        options=build_options(args),
        sender=sender,
    )
    if reply is None:
        console.print("[dim](no content)[/dim]")
    else:
        console.print(Markdown(reply))
    return 0


async def cmd_chat(
    args: argparse.Namespace,
    console: Console,
    sender: Optional[LLMSender] = None,
    session: Optional[PromptSession] = None,
) -> int:
    """Interactive multi-turn chat."""
    options = build_options(args)
    budget = None
    if getattr(args, "context_model", None):
        reserve = options.max_tokens if options and options.max_tokens else DEFAULT_RESERVE_FOR_RESPONSE
        budget = TokenBudget.for_model(args.context_model, reserve_for_response=reserve)

    active_sender = _open_sender(sender)
    conversation = Conversation(
        active_sender,
        args.system,
        options=options,
        max_retries=args.max_retries,
        budget=budget,
    )
    session = session or PromptSession(history=InMemoryHistory())
    console.print(f"[dim]{CHAT_HELP}[/dim]")

    try:
        while True:
            try:
                line = await session.prompt_async("> ")
            except KeyboardInterrupt:
                continue
            except EOFError:
                break

            line = line.strip()
            if not line:
                continue

            if line.startswith("/"):
                command, _, rest = line.partition(" ")
                if command in ("/quit", "/exit"):
                    break
                if command == "/clear":
                    conversation.clear()
                    console.print("[dim]History cleared[/dim]")
                elif command == "/save":
                    if not rest.strip():
                        console.print("[yellow]Usage: /save PATH[/yellow]")
                    else:
                        conversation.save(rest.strip())
                        console.print(f"[dim]Saved to {rest.strip()}[/dim]")
                else:
                    console.print(f"[yellow]Unknown command {command}. {CHAT_HELP}[/yellow]")
                continue

            reply = await conversation.send(line)
            console.print(Markdown(reply) if reply is not None else "[dim](no content)[/dim]")
    finally:
        if sender is None:
            await active_sender.aclose()

    return 0


def cmd_render(args: argparse.Namespace, console: Console) -> int:
    """Render a template file with --var values."""
    template = PromptTemplate.load(args.template)
    rendered = template.render(parse_variables(args.var), strict=not args.lenient)
    console.print(rendered, markup=False, highlight=False)
    return 0


def cmd_analyze(args: argparse.Namespace, console: Console) -> int:
    """
    Score a prompt and look for injection attempts.

    The prompt comes from the positional argument or from --file. Returns 1
    when an injection pattern matched or the token limit is exceeded.
    """
    if args.file:
        prompt = read_text_file(args.file)
    elif args.prompt:
        prompt = args.prompt
    else:
        raise InvalidArgumentError("analyze needs a prompt or --file")

    analysis = guard.analyze(prompt, args.token_limit)
    if args.json:
        console.print(analysis.to_json(), markup=False, highlight=False, soft_wrap=True)
    else:
        table = Table(title="Prompt analysis", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value")
        table.add_row("Quality", f"{analysis.quality_score}/100 ({analysis.quality_grade})")
        table.add_row("Tokens", str(analysis.estimated_tokens))
        table.add_row("Words", str(analysis.word_count))
        table.add_row("Characters", str(analysis.character_count))
        if analysis.token_limit is not None:
            table.add_row("Token limit", str(analysis.token_limit))
        table.add_row("Injection risk", "[red]yes[/red]" if analysis.has_injection_risk else "no")
        console.print(table)
        for pattern in analysis.injection_patterns:
            console.print(f"[red]injection:[/red] {escape(pattern)}", highlight=False)
        for warning in analysis.warnings:
            console.print(f"[yellow]warning:[/yellow] {escape(warning)}", highlight=False)
        for suggestion in analysis.suggestions:
            console.print(f"[dim]suggestion:[/dim] {escape(suggestion)}", highlight=False)

    return 1 if analysis.has_injection_risk or analysis.exceeds_token_limit else 0


def _print_validation(console: Console, errors: list[str]) -> None:
    table = Table(title="Chain validation", show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Problem", style="red")
    for index, error in enumerate(errors, start=1):
        table.add_row(str(index), error)
    console.print(table)


def cmd_validate(args: argparse.Namespace, console: Console) -> int:
    """Validate a chain file against the given --var names."""
    chain = PromptChain.load(args.chain)
    errors = chain.validate(parse_variables(args.var))
    if not errors:
        console.print(f"[green]Chain is valid[/green] ({chain.step_count} step(s))")
        return 0
    _print_validation(console, errors)
    return 1


async def cmd_run(args: argparse.Namespace, console: Console, sender: Optional[LLMSender] = None) -> int:
    """Validate and run a chain file."""
    variables = parse_variables(args.var)
    chain = PromptChain.load(args.chain)

    errors = chain.validate(variables)
    if errors:
        _print_validation(console, errors)
        return 1

    if args.max_retries is not None:
        chain.with_max_retries(args.max_retries)
    options = build_options(args)
    if options is not None:
        chain.with_options(options)
    if args.system is not None:
        chain.with_system_prompt(args.system)

    def show_step(step: StepResult) -> None:
        console.print(
            f"[cyan]{step.step_name}[/cyan] -> [bold]{step.output_variable}[/bold] "
            f"[dim]({step.elapsed * 1000:.0f} ms)[/dim]"
        )

    active_sender = _open_sender(sender)
    chain.sender = active_sender
    try:
        result = await chain.run(variables, on_step=show_step)
    finally:
        if sender is None:
            await active_sender.aclose()

    console.rule("Final response")
    if result.final_response is None:
        console.print("[dim](no content)[/dim]")
    else:
        console.print(Markdown(result.final_response))

    if args.output:
        write_text_file(args.output, result.to_json())
        console.print(f"[dim]Result written to {args.output}[/dim]")
    return 0


def cmd_library(args: argparse.Namespace, console: Console) -> int:
    """List the prompt library or show one entry."""
    library = PromptLibrary.load(args.file) if args.file else PromptLibrary.create_default()

    if args.action == "show":
        if not args.name:
            raise InvalidArgumentError("library show requires an entry name")
        entry = library.get(args.name)
        console.print(f"[bold]{entry.name}[/bold]")
        if entry.description:
            console.print(entry.description)
        if entry.category:
            console.print(f"[dim]category:[/dim] {entry.category}")
        if entry.tag_list:
            console.print(f"[dim]tags:[/dim] {', '.join(entry.tag_list)}")
        required = entry.template.get_required_variables()
        console.print(f"[dim]requires:[/dim] {', '.join(required) if required else '(nothing)'}")
        console.rule()
        console.print(entry.template.template, markup=False, highlight=False)
        return 0

    table = Table(title="Prompt library")
    table.add_column("Name", style="cyan")
    table.add_column("Category")
    table.add_column("Description")
    table.add_column("Tags", style="dim")
    for entry in library:
        table.add_row(
            entry.name,
            entry.category or "",
            entry.description or "",
            ", ".join(entry.tag_list),
        )
    console.print(table)
    return 0
