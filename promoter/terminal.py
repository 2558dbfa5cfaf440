"""Console output for the promoter CLI."""

import sys
from contextlib import contextmanager
from typing import Any, Generator, Iterable, Optional

from rich.console import Console
from rich.status import Status
from rich.text import Text

_console = Console()
_spinner: Optional[Status] = None

RESULT_STYLES = {
    "completed": "green",
    "already-exists": "yellow",
}


def header(text: str, subtext: str = "") -> None:
    line = Text.assemble(("=> ", "bold cyan"), (text, "bold cyan"))
    if subtext:
        line.append(f" ({subtext})", style="dim")
    _console.print(line)


def print(*objects: Any, **kwargs: Any) -> None:
    _console.print(*objects, **kwargs)


def detail(text: str) -> None:
    _console.print(Text(text, style="dim"))


def success(text: str) -> None:
    _console.print(Text(text, style="bold green"))


def warn(text: str) -> None:
    _console.print(Text(text, style="bold yellow"))


def error(text: str, exit: bool = True) -> None:
    _console.print(Text(text, style="bold red"))

    if exit:
        sys.exit(1)


def steps(descriptions: Iterable[str]) -> None:
    """Print a numbered list of planned steps."""
    for number, description in enumerate(descriptions, start=1):
        _console.print(Text(f"  {number}. {description}", style="dim"))


def step_result(description: str, result: str) -> None:
    _console.print(
        Text.assemble(f"  {description}: ", (result, RESULT_STYLES.get(result, "bold red")))
    )


def secret(label: str, value: str) -> None:
    """Print a generated secret once, for the operator to store."""
    _console.print(Text.assemble((f"{label}: ", "bold yellow"), (value, "bold")))


@contextmanager
def spinner(text: str) -> Generator[Status, None, None]:
    global _spinner

    _spinner = _console.status(text, spinner="dots")
    _spinner.start()
    try:
        yield _spinner
    finally:
        _spinner.stop()
        _spinner = None


def update_spinner(text: str) -> None:
    if _spinner is not None:
        _spinner.update(text)
