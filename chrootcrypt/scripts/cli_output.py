"""
CLI Output Formatting Module (SSOT)

Human-readable diagnostics for chrootcrypt, always on stderr so stdout
stays clean for -p (print mount points) consumers.

Usage:
    from chrootcrypt.scripts.cli_output import CLIOutput

    out = CLIOutput.detect(quiet=args.print_paths)
    out.info("foo mounted at /var/run/chrootcrypt/usr/local/chroots/foo")
    out.warn("Potential issue")
    out.error("Failed!")
    out.progress()
"""

from typing import Optional

from rich.console import Console

from chrootcrypt.core.constants import ConsoleStyle


class CLIOutput:
    """
    SSOT for consistent CLI output formatting.

    Features:
    - Everything goes to stderr through a rich Console
    - ASCII-safe symbols for minimal terminals
    - Quiet mode suppresses info/log/progress; warnings and errors always show
    - Markup is disabled: paths and driver output are printed verbatim
    """

    def __init__(self, style: Optional[ConsoleStyle] = None, quiet: bool = False, console: Optional[Console] = None):
        """
        Initialize CLI output formatter.

        Args:
            style: Symbol set (auto-detected if None)
            quiet: Suppress non-essential output (print mode)
            console: rich Console to write to (stderr if None)
        """
        self.style = style or ConsoleStyle.detect()
        self.quiet = quiet
        self.console = console or Console(stderr=True, highlight=False, soft_wrap=True)
        self._progress_open = False

    @classmethod
    def detect(cls, quiet: bool = False) -> "CLIOutput":
        """Auto-detect console capabilities and return a formatter."""
        return cls(style=ConsoleStyle.detect(), quiet=quiet)

    def _print(self, msg: str, style: Optional[str] = None) -> None:
        self._close_progress()
        self.console.print(msg, style=style, markup=False)

    def _close_progress(self) -> None:
        if self._progress_open:
            self.console.print("", markup=False)
            self._progress_open = False

    def info(self, message: str) -> None:
        """Print success/info message."""
        if self.quiet:
            return
        self._print(f"{self.style.SUCCESS} {message}", style="green")

    def log(self, message: str) -> None:
        """Print plain message."""
        if self.quiet:
            return
        self._print(message)

    def warn(self, message: str) -> None:
        """Print warning message."""
        self._print(f"{self.style.WARNING} {message}", style="yellow")

    def error(self, message: str) -> None:
        """Print error message."""
        self._print(f"{self.style.FAILURE} {message}", style="bold red")

    def detail(self, text: str) -> None:
        """Print multi-line external tool output, indented, never suppressed."""
        for line in text.splitlines():
            self._print(f"    {line}", style="dim")

    def begin_progress(self, message: str) -> None:
        """Start a progress line; progress() appends to it."""
        if self.quiet:
            return
        self._close_progress()
        self.console.print(message, end="", markup=False)
        self._progress_open = True

    def progress(self) -> None:
        """Append one progress mark to the open progress line."""
        if self.quiet:
            return
        self.console.print(self.style.symbol("PROGRESS"), end="", markup=False)
        self._progress_open = True

    def end_progress(self) -> None:
        """Terminate the progress line."""
        self._close_progress()
