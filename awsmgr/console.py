# This file is part of awsmgr. See LICENSE file for license information.
"""Prompts, tables and progress output on the terminal."""

import contextlib
import logging
import signal
import threading
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

from rich import box
from rich.console import Console
from rich.table import Table

from awsmgr.convergence import PollObserver

log = logging.getLogger(__name__)

# Prompts contain literal brackets such as "[y/N]", so markup stays off.
console = Console(highlight=False, markup=False)

END_OF_USER_DATA = "END"


def say(message: str, style: Optional[str] = None):
    """Print a message for the user."""
    console.print(message, style=style)


def warn(message: str):
    """Print a warning for the user."""
    console.print(message, style="yellow")


def error(message: str):
    """Print an error for the user."""
    console.print(message, style="bold red")


def ask(prompt: str, default: str = "") -> str:
    """Read a line, returning ``default`` when it is blank."""
    answer = console.input(prompt, markup=False).strip()
    return answer or default


def ask_secret(prompt: str) -> str:
    """Read a line without echoing it."""
    return console.input(prompt, markup=False, password=True).strip()


def ask_int(prompt: str, default: str = "") -> int:
    """Read an integer; anything that is not one gives -1."""
    try:
        return int(ask(prompt, default))
    except ValueError:
        return -1


def confirm(question: str, default: bool = False) -> bool:
    """Ask a yes/no question.

    The hint shows the default in capitals and a blank answer takes it.
    """
    hint = "[Y/n]" if default else "[y/N]"
    answer = ask("{} {}: ".format(question, hint)).lower()
    if not answer:
        return default
    return answer in ("y", "yes")


def pick(
    title: str,
    items: Sequence[Any],
    label: Callable[[Any], str] = str,
    default: int = 1,
) -> Optional[Any]:
    """Show a numbered menu and return the chosen item.

    Args:
        title: heading printed above the menu
        items: choices
        label: callable turning an item into its menu text
        default: 1-based index taken on a blank answer

    Returns:
        the chosen item, or None for an empty menu or a bad answer
    """
    if not items:
        return None
    console.print(title, style="bold")
    for i, item in enumerate(items, start=1):
        marker = " <- default" if i == default else ""
        console.print(" {:2d}) {}{}".format(i, label(item), marker))
    choice = ask_int("Choice [{}]: ".format(default), str(default))
    if 1 <= choice <= len(items):
        return items[choice - 1]
    return None


def collect_user_data(title: str) -> str:
    """Read a multi-line script until a line holding only END.

    A blank first line skips the script.
    """
    console.print(title, style="bold")
    console.print(
        "Paste the script, finish with a line containing only {}. "
        "Press Enter to skip.".format(END_OF_USER_DATA)
    )
    lines: List[str] = []
    while True:
        line = console.input("", markup=False)
        if not lines and not line.strip():
            return ""
        if line.strip() == END_OF_USER_DATA:
            break
        lines.append(line)
    return "\n".join(lines) + "\n" if lines else ""


def print_table(
    title: str,
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
):
    """Render ``rows`` as a table."""
    table = Table(title=title, box=box.ROUNDED)
    for column in columns:
        table.add_column(column, no_wrap=True)
    for row in rows:
        table.add_row(*("" if cell is None else str(cell) for cell in row))
    console.print(table)


def print_details(title: str, fields: Sequence[Tuple[str, Any]]):
    """Render label/value pairs as a borderless two column table."""
    table = Table(title=title, show_header=False, box=None, padding=(0, 1))
    table.add_column("field", style="cyan")
    table.add_column("value")
    for name, value in fields:
        table.add_row(name, str(value))
    console.print(table)


class ProgressMarker(PollObserver):
    """Print a marker per poll attempt.

    An ``x`` marks a failed query, a bracketed status or a dot marks a
    query that did not converge yet.
    """

    def __init__(self, show_status: bool = False):
        """Create the observer.

        Args:
            show_status: print the snapshot itself instead of a dot
        """
        self.show_status = show_status
        self.printed = False

    def on_snapshot(self, attempt, snapshot):
        """Print progress for a non-converged snapshot."""
        marker = " [{}]".format(snapshot) if self.show_status else "."
        console.print(marker, end="")
        self.printed = True

    def on_error(self, attempt, error):
        """Print an x for a failed query."""
        console.print("x", end="", style="red")
        self.printed = True

    def finish(self):
        """End the marker line, if one was started."""
        if self.printed:
            console.print()
            self.printed = False


@contextlib.contextmanager
def cancel_on_interrupt() -> Iterator[threading.Event]:
    """Turn Ctrl-C into a cancellation event for the duration.

    Outside the main thread signal handlers cannot be installed; the event
    is still returned but never set by Ctrl-C.
    """
    cancel = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def handler(_signum, _frame):
        log.debug("Interrupt received, cancelling wait")
        cancel.set()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)
