"""Colored logging, log sinks and timing utilities for glb-compress."""

import sys
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

# Receives one progress line at a time; must not raise.
LogSink = Callable[[str], None]


# ANSI color codes
class Colors:
    """ANSI escape codes for terminal colors."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    CYAN = "\033[36m"

    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_CYAN = "\033[96m"


def _supports_color() -> bool:
    """Check if terminal supports color output."""
    if not hasattr(sys.stdout, "isatty"):
        return False
    return sys.stdout.isatty()


_USE_COLOR = _supports_color()


def _c(color: str, text: str) -> str:
    """Apply color to text if supported."""
    if not _USE_COLOR:
        return text
    return f"{color}{text}{Colors.RESET}"


def bold(text: str) -> str:
    """Make text bold."""
    return _c(Colors.BOLD, text)


def dim(text: str) -> str:
    """Make text dim."""
    return _c(Colors.DIM, text)


def cyan(text: str) -> str:
    """Color text cyan."""
    return _c(Colors.CYAN, text)


def bright_green(text: str) -> str:
    """Color text bright green."""
    return _c(Colors.BRIGHT_GREEN, text)


def bright_yellow(text: str) -> str:
    """Color text bright yellow."""
    return _c(Colors.BRIGHT_YELLOW, text)


def bright_red(text: str) -> str:
    """Color text bright red."""
    return _c(Colors.BRIGHT_RED, text)


def bright_cyan(text: str) -> str:
    """Color text bright cyan."""
    return _c(Colors.BRIGHT_CYAN, text)


# Log level formatting
def log_info(msg: str) -> None:
    """Print info message."""
    print(f"  {cyan('INFO')}  {msg}")


def log_ok(msg: str) -> None:
    """Print success message."""
    print(f"    {bright_green('OK')}  {msg}")


def log_warn(msg: str) -> None:
    """Print warning message."""
    print(f"  {bright_yellow('WARN')}  {msg}")


def log_error(msg: str) -> None:
    """Print error message."""
    print(f" {bright_red('ERROR')}  {msg}", file=sys.stderr)


def log_detail(msg: str, indent: int = 6) -> None:
    """Print indented detail message."""
    print(f"{' ' * indent}{msg}")


def print_header(title: str, char: str = "=", width: int = 60) -> None:
    """Print a header with decorative borders."""
    border = char * width
    print(f"\n{cyan(border)}")
    print(f"  {bold(title)}")
    print(f"{cyan(border)}")


class PipelineLog:
    """Fan progress lines out to an injected sink and, unless quiet, the console.

    Messages prefixed with ``"!"`` are warnings and are printed with
    :func:`log_warn`; the prefix is stripped before reaching the sink.
    """

    def __init__(self, sink: LogSink | None = None, quiet: bool = False) -> None:
        self._sink = sink
        self._quiet = quiet
        self.lines: list[str] = []

    def __call__(self, msg: str) -> None:
        warning = msg.startswith("!")
        if warning:
            msg = msg[1:].lstrip()
        self.lines.append(msg)
        if not self._quiet:
            if warning:
                log_warn(msg)
            else:
                log_detail(msg, indent=2)
        if self._sink is not None:
            self._sink(msg)

    def warn(self, msg: str) -> None:
        """Emit a warning line."""
        self(f"! {msg}")


# Timing utilities
def format_duration(seconds: float) -> str:
    """Format seconds into human-readable duration."""
    if seconds < 0.001:
        return f"{seconds * 1000000:.0f}μs"
    elif seconds < 1:
        return f"{seconds * 1000:.1f}ms"
    elif seconds < 60:
        return f"{seconds:.2f}s"
    else:
        mins = int(seconds // 60)
        secs = seconds % 60
        return f"{mins}m {secs:.1f}s"


@dataclass
class TimingResult:
    """Result from a timed operation."""

    elapsed: float
    message: str


@contextmanager
def timed(description: str, print_on_exit: bool = True) -> Iterator[TimingResult]:
    """Context manager for timing operations.

    Usage:
        with timed("Cleanup phase", print_on_exit=False) as t:
            run_cleanup()
        timings[t.message] = t.elapsed
    """
    result = TimingResult(elapsed=0.0, message=description)
    start = time.perf_counter()
    try:
        yield result
    finally:
        result.elapsed = time.perf_counter() - start
        if print_on_exit:
            print(f"  {dim('TIME')}  {description}: {bright_cyan(format_duration(result.elapsed))}")


@dataclass
class StepTimer:
    """Track progress and timing across a batch of files."""

    total: int
    timings: list[tuple[str, float]] = field(default_factory=list)
    _total_start: float = field(default_factory=time.perf_counter)

    def record(self, name: str, elapsed: float) -> None:
        """Record the duration of a finished step."""
        self.timings.append((name, elapsed))

    def total_elapsed(self) -> float:
        """Get total elapsed time since timer started."""
        return time.perf_counter() - self._total_start

    def print_summary(self) -> None:
        """Print timing summary for all steps."""
        border = "-" * 50
        print(f"\n{dim(border)}")
        print("  Timing Summary")
        print(f"{dim(border)}")
        for name, elapsed in self.timings:
            padding = 40 - len(name)
            print(f"  {name}{' ' * max(1, padding)}{bright_cyan(format_duration(elapsed))}")
        print(f"{dim(border)}")
        total = self.total_elapsed()
        print(f"  {bold('Total')}{' ' * 33}{bright_green(format_duration(total))}")


# Result formatting
def format_count(count: int, singular: str, plural: str | None = None) -> str:
    """Format count with proper singular/plural form."""
    if plural is None:
        plural = singular + "s"
    word = singular if count == 1 else plural
    return f"{count:,} {word}"


def format_bytes(size: int) -> str:
    """Format byte size in human-readable form."""
    if size < 1024:
        return f"{size} B"
    elif size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    else:
        return f"{size / 1024 / 1024:.2f} MB"


def format_reduction(before: int, after: int) -> str:
    """Format the size change between two byte counts as a percentage."""
    if before <= 0:
        return dim("n/a")
    ratio = (1 - after / before) * 100
    if ratio >= 0:
        return bright_green(f"-{ratio:.1f}%")
    return bright_red(f"+{-ratio:.1f}%")
