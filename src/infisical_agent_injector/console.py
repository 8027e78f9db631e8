"""Rich console utilities for styled terminal output.

This module owns the shared Rich console used both for startup messages
and, through `setup_logging`, for every log record the webhook emits.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

# styles referenced by the message helpers below
_THEME = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "highlight": "cyan bold",
    }
)

# shared with RichHandler so log records and startup messages interleave cleanly
console = Console(theme=_THEME)


def setup_logging(debug: bool = False) -> None:
    """Route the standard logging module through the shared console.

    Args:
        debug: Log at DEBUG level instead of INFO.

    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, markup=False)],
        force=True,
    )
    # werkzeug logs every request at INFO
    logging.getLogger("werkzeug").setLevel(logging.DEBUG if debug else logging.WARNING)


def info(message: str) -> None:
    """Report a startup detail, such as where the serving certificate went."""
    console.print(f"[info]ℹ[/info] {message}")


def success(message: str) -> None:
    """Announce that startup finished and the webhook is about to serve.

    Args:
        message: Text shown after the check mark.

    """
    console.print(f"[success]✓[/success] {message}")


def warning(message: str) -> None:
    """Flag a startup condition that does not stop the webhook.

    Running outside a cluster with a local kubeconfig is the usual case:
    the server still starts, but the webhook configuration it patches
    belongs to whatever cluster the kubeconfig points at.

    Args:
        message: Text shown after the warning sign.

    """
    console.print(f"[warning]⚠[/warning] {message}")


def error(message: str) -> None:
    """Report a fatal startup failure; the caller exits right after."""
    console.print(f"[error]✗[/error] {message}")


def action(message: str) -> None:
    console.print(f"[info]→[/info] {message}")


def highlight(text: str) -> str:
    """Wrap a value, like the namespace or port, in highlight markup."""
    return f"[highlight]{text}[/highlight]"
