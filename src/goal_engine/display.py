# display.py
# All terminal output for the goal engine.
#
# This module owns presentation entirely. Core modules never format strings
# for the terminal; they call named functions here. Swap this file to
# change the entire UI.
#
# Colour language:
#   cyan: scheduling / routing events
#   blue: oracle selections
#   yellow: policy interventions and warnings
#   green: success / goals completed
#   red: failures, halts
#   magenta: capability arguments and observations
#   dim: external service chatter

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from goal_engine.models import Failure, Response, RunSummary

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    value = value.replace("\n", " ")
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


def _progress_bar(progress: int, width: int = 10) -> str:
    filled = progress * width // 100
    return "▓" * filled + "░" * (width - filled)


# ---------------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------------


def banner(model: str, goal_title: str, max_turns: int) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Goal Engine[/bold cyan]\n"
            "[dim]Task stack · forced interventions · oracle-driven dispatch[/dim]\n\n"
            f"[dim]Model     :[/dim] [white]{model}[/white]\n"
            f"[dim]Goal      :[/dim] [white]{goal_title}[/white]\n"
            f"[dim]Turn limit:[/dim] [white]{max_turns}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def turn_start(turn: int, goal_title: str, goal_turn: int, progress: int) -> None:
    console.print()
    console.print(
        Rule(
            f"[cyan]TURN {turn}[/cyan] [dim]·[/dim] [white]{goal_title}[/white] "
            f"[dim](goal turn {goal_turn})[/dim] "
            f"[dim]{_progress_bar(progress)} {progress}%[/dim]",
            style="cyan",
        )
    )


def fan_out(titles: list[str]) -> None:
    console.print()
    console.print(
        _label("SCHEDULER", "cyan"),
        f"[cyan] Working on {len(titles)} sibling goals concurrently:[/cyan] "
        f"[white]{', '.join(titles)}[/white]",
    )


def run_complete(summary: RunSummary) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold green]Stack empty.[/bold green]\n"
            f"[dim]Turns:[/dim] [white]{summary.turns}[/white]   "
            f"[dim]Goals completed:[/dim] [white]{summary.popped}[/white]   "
            f"[dim]Progress:[/dim] [white]{summary.progress}%[/white]",
            title=_label("RUN COMPLETE", "green"),
            border_style="green",
            padding=(0, 2),
        )
    )
    console.print()


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{reason}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


def intervention(phase: str, reason: str, capability: str | None) -> None:
    target = f"[bold white]{capability}[/bold white]" if capability else "[dim]restricted choice[/dim]"
    console.print(
        _label(f"POLICY: {phase.upper()}", "yellow"),
        f"[yellow] {reason}[/yellow] → {target}",
    )


def warning(message: str) -> None:
    console.print(_label("WARNING", "yellow"), f"[yellow] {message}[/yellow]")


# ---------------------------------------------------------------------------
# Selection and dispatch
# ---------------------------------------------------------------------------


def selection(capability: str, rationale: str) -> None:
    console.print(
        f"  [blue]Select[/blue]   [bold white]{capability}[/bold white]"
        f"  [dim]{_mono(rationale or '(no rationale)', 160)}[/dim]"
    )


def selection_failed(reply: str, available: str) -> None:
    console.print(
        Panel(
            f"[bold red]Oracle named no registered capability.[/bold red]\n"
            f"[dim]Reply:[/dim] [white]{_mono(reply, 200)}[/white]\n"
            f"[dim]Available:[/dim] [white]{available}[/white]",
            title=_label("SELECTION FAILED ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def arguments(capability: str, args: dict[str, Any], raw_field: str | None) -> None:
    shown = {
        key: (f"<{len(str(value))} chars>" if key == raw_field else value)
        for key, value in args.items()
    }
    console.print(
        f"  [magenta]Args[/magenta]     [dim]{_mono(json.dumps(shown, default=str), 200)}[/dim]"
    )


def observation(capability: str, response: Response) -> None:
    if isinstance(response, Failure):
        console.print(
            f"  [red]Failed[/red]   [bold white]{capability}[/bold white]"
            f"  [white]{_mono(response.summary, 100)}[/white]"
            f"  [dim]{_mono(response.error, 140)}[/dim]"
        )
        return
    console.print(
        f"  [magenta]Observe[/magenta]  [white]{_mono(response.summary, 140)}[/white]"
    )


# ---------------------------------------------------------------------------
# Task stack
# ---------------------------------------------------------------------------


def goal_pushed(titles: list[str], reasoning: str) -> None:
    console.print(
        _label("STACK: PUSH", "cyan"),
        f"[white] {', '.join(titles)}[/white]  [dim]{_mono(reasoning, 120)}[/dim]",
    )


def goal_popped(title: str, progress: int) -> None:
    console.print(
        _label("STACK: DONE ✓", "green"),
        f"[bold green] {title}[/bold green]  [dim]{_progress_bar(progress)} {progress}%[/dim]",
    )


# ---------------------------------------------------------------------------
# External services
# ---------------------------------------------------------------------------


def service_started(service: str, command: str) -> None:
    console.print(f"  [dim]↳ {service}: launched {command}[/dim]")


def service_stderr(service: str, line: str) -> None:
    console.print(f"  [dim]↳ {service} stderr: {_mono(line, 160)}[/dim]")


def service_exited(service: str, code: int | None) -> None:
    if code:
        console.print(_label("SERVICE EXIT", "red"), f"[red] {service} exited with code {code}[/red]")
    else:
        console.print(f"  [dim]↳ {service}: exited[/dim]")
