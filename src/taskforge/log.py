"""Logging utilities with colored output via Rich.

Pipelines receive a :class:`Logger` through their context and never print on
their own. The module level helpers (``info``, ``warn`` ...) delegate to a
default instance and are what the CLI uses.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape


class Logger:
    """Leveled console logger: info/success/warn go to stdout, errors to stderr."""

    def __init__(
        self,
        *,
        verbose: bool = False,
        console: Console | None = None,
        err_console: Console | None = None,
    ) -> None:
        self.verbose = verbose
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(highlight=False, stderr=True)

    def info(self, msg: str) -> None:
        self.console.print(f"[blue]\\[INFO][/blue] {escape(msg)}")

    def success(self, msg: str) -> None:
        self.console.print(f"[green]\\[OK][/green] {escape(msg)}")

    def warn(self, msg: str) -> None:
        self.console.print(f"[yellow]\\[WARN][/yellow] {escape(msg)}")

    def error(self, msg: str) -> None:
        self.err_console.print(f"[red]\\[ERROR][/red] {escape(msg)}")

    def debug(self, msg: str) -> None:
        if self.verbose:
            self.console.print(f"[dim]\\[DEBUG] {escape(msg)}[/dim]")


class NullLogger(Logger):
    """Swallows everything. Used by programmatic callers that want silence."""

    def __init__(self) -> None:
        super().__init__(console=Console(quiet=True), err_console=Console(quiet=True))

    def info(self, msg: str) -> None:
        pass

    def success(self, msg: str) -> None:
        pass

    def warn(self, msg: str) -> None:
        pass

    def error(self, msg: str) -> None:
        pass

    def debug(self, msg: str) -> None:
        pass


default_logger = Logger()
console = default_logger.console


def set_verbose(enabled: bool) -> None:
    default_logger.verbose = enabled


def info(msg: str) -> None:
    default_logger.info(msg)


def success(msg: str) -> None:
    default_logger.success(msg)


def warn(msg: str) -> None:
    default_logger.warn(msg)


def error(msg: str) -> None:
    default_logger.error(msg)


def debug(msg: str) -> None:
    default_logger.debug(msg)
