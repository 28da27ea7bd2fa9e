"""Neon terminal UI components for reverie.

Implements a 1980s neon terminal aesthetic using the Rich library,
with a Dracula-based color theme.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import pyfiglet
from rich import box
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

if TYPE_CHECKING:
    from reverie.orchestrator import RunSummary


# =============================================================================
# Color Theme (Dracula-based)
# =============================================================================

NEON_COLORS = {
    "background": "#282A36",
    "foreground": "#F8F8F2",
    "red": "#FF5555",
    "green": "#50FA7B",
    "yellow": "#F1FA8C",
    "purple": "#BD93F9",
    "pink": "#FF79C6",
    "cyan": "#8BE9FD",
    "orange": "#FFB86C",
}

NEON_THEME = Theme({
    "neon.red": NEON_COLORS["red"],
    "neon.green": NEON_COLORS["green"],
    "neon.yellow": NEON_COLORS["yellow"],
    "neon.purple": NEON_COLORS["purple"],
    "neon.pink": NEON_COLORS["pink"],
    "neon.cyan": NEON_COLORS["cyan"],
    "neon.fg": NEON_COLORS["foreground"],
    # Semantic styles
    "neon.error": f"bold {NEON_COLORS['red']}",
    "neon.success": f"bold {NEON_COLORS['green']}",
    "neon.warning": f"bold {NEON_COLORS['yellow']}",
    "neon.info": NEON_COLORS["cyan"],
    "neon.dim": f"dim {NEON_COLORS['foreground']}",
})

# Hero gradient runs cyan -> pink -> purple
HERO_GRADIENT = [NEON_COLORS["cyan"], NEON_COLORS["pink"], NEON_COLORS["purple"]]

# Status configuration mapping
STATUS_CONFIG = {
    "pending": {"icon": "⏲", "color": NEON_COLORS["yellow"]},
    "in_progress": {"icon": "⮕", "color": NEON_COLORS["cyan"]},
    "completed": {"icon": "✔", "color": NEON_COLORS["green"]},
    "failed": {"icon": "✗", "color": NEON_COLORS["red"]},
}


def create_console() -> Console:
    """Create a Rich Console with neon theme applied.

    Returns:
        Console: A new Rich Console instance configured with the neon theme.

    """
    return Console(theme=NEON_THEME)


def create_error_console() -> Console:
    """Create a neon-themed Console that writes to stderr."""
    return Console(theme=NEON_THEME, stderr=True)


# =============================================================================
# Hero Header Component
# =============================================================================


def _interpolate_color(color1: str, color2: str, t: float) -> str:
    """Interpolate between two hex colors.

    Args:
        color1: Starting hex color (e.g., "#8BE9FD").
        color2: Ending hex color (e.g., "#FF79C6").
        t: Interpolation factor (0.0 = color1, 1.0 = color2).

    Returns:
        Interpolated hex color string.

    """
    r1, g1, b1 = int(color1[1:3], 16), int(color1[3:5], 16), int(color1[5:7], 16)
    r2, g2, b2 = int(color2[1:3], 16), int(color2[3:5], 16), int(color2[5:7], 16)
    r = int(r1 + (r2 - r1) * t)
    g = int(g1 + (g2 - g1) * t)
    b = int(b1 + (b2 - b1) * t)
    return f"#{r:02x}{g:02x}{b:02x}"


def _get_gradient_color(position: float) -> str:
    """Get a color from the hero gradient at position 0.0 to 1.0."""
    position = max(0.0, min(1.0, position))
    index = position * (len(HERO_GRADIENT) - 1)
    lower_idx = int(index)
    upper_idx = min(lower_idx + 1, len(HERO_GRADIENT) - 1)
    return _interpolate_color(HERO_GRADIENT[lower_idx], HERO_GRADIENT[upper_idx], index - lower_idx)


def print_phase_hero(console: Console, title: str, subtitle: str = "") -> None:
    """Print an ASCII art title with a horizontal neon gradient.

    Args:
        console: Rich Console instance for output.
        title: Text to render as ASCII art.
        subtitle: Optional dim line shown under the art.

    """
    try:
        ascii_art = pyfiglet.figlet_format(title, font="ansi_shadow")
    except pyfiglet.FigletError:
        ascii_art = pyfiglet.figlet_format(title, font="standard")

    lines = ascii_art.rstrip("\n").split("\n")
    max_width = max((len(line) for line in lines), default=1) or 1

    art = Text()
    for line_idx, line in enumerate(lines):
        for char_idx, char in enumerate(line):
            if char == " ":
                art.append(char)
            else:
                color = _get_gradient_color(char_idx / max_width)
                art.append(char, style=Style(color=color, bold=True))
        if line_idx < len(lines) - 1:
            art.append("\n")

    if subtitle:
        art.append("\n")
        art.append(f"    ~ {subtitle} ~", style=Style(color=NEON_COLORS["pink"], dim=True))

    console.print()
    console.print(Panel(
        art,
        box=box.DOUBLE_EDGE,
        border_style=Style(color=NEON_COLORS["purple"], dim=True),
        padding=(0, 2),
    ))


# =============================================================================
# Pill Badge Component
# =============================================================================


def pill(text: str, bg_color: str, fg_color: str) -> Text:
    """Create a pill-shaped badge with the given colors.

    Args:
        text: The text to display inside the pill.
        bg_color: Background color hex code.
        fg_color: Foreground (text) color hex code.

    Returns:
        Rich Text object containing the styled pill.

    """
    result = Text()
    result.append("▌", style=Style(color=bg_color))
    result.append(text, style=Style(color=fg_color, bgcolor=bg_color, bold=True))
    result.append("▐", style=Style(color=bg_color))
    return result


# =============================================================================
# Message Components
# =============================================================================


def print_error(console: Console, title: str, message: str) -> None:
    """Print an error panel with red styling.

    Args:
        console: Rich Console instance for output.
        title: Error title text.
        message: Detailed error message.

    """
    panel = Panel(
        Text(message, style=Style(color=NEON_COLORS["red"])),
        title=f"⚠️  {title}",
        title_align="left",
        box=box.DOUBLE_EDGE,
        border_style=Style(color=NEON_COLORS["red"]),
        padding=(0, 1),
    )
    console.print(panel)


def print_warning(console: Console, message: str) -> None:
    """Print a warning panel with yellow styling.

    Args:
        console: Rich Console instance for output.
        message: Warning message to display.

    """
    panel = Panel(
        Text(message, style=Style(color=NEON_COLORS["yellow"])),
        box=box.ROUNDED,
        border_style=Style(color=NEON_COLORS["yellow"]),
        padding=(0, 1),
    )
    console.print(panel)


def print_success(console: Console, message: str) -> None:
    """Print a success message with green styling."""
    console.print(f"[neon.success]✔[/] [neon.green]{escape(message)}[/]", highlight=False)


def print_info(console: Console, message: str) -> None:
    """Print an info message with cyan styling."""
    console.print(f"[neon.cyan]ℹ[/] [neon.fg]{escape(message)}[/]", highlight=False)


def print_dim(console: Console, message: str) -> None:
    """Print a dimmed message for secondary information."""
    console.print(f"[neon.dim]{escape(message)}[/]", highlight=False)


# =============================================================================
# Chunk Progress Components
# =============================================================================


def print_chunk_progress(console: Console, chunk_num: int, total: int, language: str, source: str | None = None) -> None:
    """Print the header shown when a chunk starts.

    Args:
        console: Rich Console instance for output.
        chunk_num: Current chunk number (1-indexed).
        total: Total number of chunks.
        language: Language of the chunk.
        source: Optional file the chunk came from.

    """
    text = Text()
    text.append("  ", style=Style())
    text.append(f"[{chunk_num}/{total}] ", style=Style(color=NEON_COLORS["cyan"], bold=True))
    text.append("Reviewing ", style=Style(color=NEON_COLORS["pink"]))
    text.append(language, style=Style(color=NEON_COLORS["orange"]))
    if source:
        # Truncate long paths from the left so the file name stays visible
        shown = source if len(source) <= 60 else "..." + source[-57:]
        text.append(f"  {shown}", style=Style(color=NEON_COLORS["foreground"], dim=True))
    console.print()
    console.print(text)


def print_chunk_complete(console: Console, chunk_num: int, total: int, ok: bool = True) -> None:
    """Print the line shown when a chunk reaches Done.

    Args:
        console: Rich Console instance for output.
        chunk_num: Current chunk number (1-indexed).
        total: Total number of chunks.
        ok: False if the chunk was recorded as failed.

    """
    text = Text()
    text.append("  ", style=Style())
    text.append(f"[{chunk_num}/{total}] ", style=Style(color=NEON_COLORS["cyan"], bold=True))
    if ok:
        text.append("✔ Done", style=Style(color=NEON_COLORS["green"]))
    else:
        text.append("✗ Failed", style=Style(color=NEON_COLORS["red"]))
    console.print(text)


def print_model_output(console: Console, title: str, content: str) -> None:
    """Print model output as rendered Markdown inside a panel.

    Args:
        console: Rich Console instance for output.
        title: Panel title (e.g. "Review").
        content: Markdown text returned by the model.

    """
    panel = Panel(
        Markdown(content),
        title=title,
        title_align="left",
        box=box.ROUNDED,
        border_style=Style(color=NEON_COLORS["purple"]),
        padding=(0, 1),
    )
    console.print(panel)


# =============================================================================
# Summary Component
# =============================================================================


def print_summary(console: Console, summary: RunSummary) -> None:
    """Print the end-of-run summary table.

    Args:
        console: Rich Console instance for output.
        summary: Counters and failures for one language pass.

    """
    table = Table(
        title=f"✨ Summary for {summary.language}",
        title_style=Style(color=NEON_COLORS["green"], bold=True),
        box=box.ROUNDED,
        border_style=Style(color=NEON_COLORS["purple"]),
        show_header=False,
        padding=(0, 1),
    )

    table.add_column("Field", style=Style(color=NEON_COLORS["cyan"]))
    table.add_column("Value", style=Style(color=NEON_COLORS["foreground"]))

    table.add_row("Chunks", f"{summary.chunks_attempted}/{summary.chunks_total} attempted")
    table.add_row("Failed Chunks", str(summary.chunks_failed))
    table.add_row("Tests Written", str(summary.artifacts_written))
    table.add_row("Tests Passed", str(summary.tests_passed))
    table.add_row("Tests Failed", str(summary.tests_failed))

    if summary.failed_chunks:
        indices = ", ".join(str(record.index) for record in summary.failed_chunks)
        table.add_row("Failed Indices", indices)

    if summary.interrupted:
        status_badge = pill(" INTERRUPTED ", NEON_COLORS["yellow"], NEON_COLORS["background"])
    elif summary.chunks_failed or summary.tests_failed:
        status_badge = pill(" ISSUES ", NEON_COLORS["red"], NEON_COLORS["background"])
    else:
        status_badge = pill(" CLEAN ", NEON_COLORS["green"], NEON_COLORS["background"])
    table.add_row("Status", status_badge)

    console.print()
    console.print(table)


# =============================================================================
# ShutdownPanel Class
# =============================================================================


@dataclass
class ShutdownStep:
    """A step in the shutdown process.

    Attributes:
        message: Description of the shutdown step.
        status: Current status of the step ("pending", "in_progress", or "completed").

    """

    message: str
    status: str = "pending"  # pending, in_progress, completed


class ShutdownPanel:
    """Live-updating panel for showing shutdown progress.

    Consolidates all shutdown messages into a single panel that
    updates in place, showing the progression of shutdown steps.

    Args:
        console: Rich Console instance for output.

    Usage:
        panel = ShutdownPanel(console)
        panel.start("Received SIGINT, finishing current chunk")
        panel.add_step("Cleaning up generated tests...")
        panel.complete_last_step()
        panel.finish()

    """

    def __init__(self, console: Console) -> None:
        self._console = console
        self._steps: list[ShutdownStep] = []
        self._live: Live | None = None

    def _render_panel(self) -> Panel:
        content = Text()

        for i, step in enumerate(self._steps):
            config = STATUS_CONFIG.get(step.status, STATUS_CONFIG["pending"])
            content.append(f"{config['icon']} ", style=Style(color=config["color"]))
            content.append(step.message, style=Style(color=NEON_COLORS["foreground"]))
            if i < len(self._steps) - 1:
                content.append("\n")

        return Panel(
            content,
            box=box.ROUNDED,
            border_style=Style(color=NEON_COLORS["yellow"]),
            padding=(0, 1),
        )

    def start(self, initial_message: str) -> None:
        """Start the live panel with an initial message.

        Args:
            initial_message: The first message to display (e.g., "Received SIGINT").

        """
        self._steps.append(ShutdownStep(message=initial_message, status="completed"))

        self._console.print()
        self._live = Live(
            self._render_panel(),
            console=self._console,
            refresh_per_second=10,
            transient=True,
        )
        self._live.start()

    def add_step(self, message: str, status: str = "in_progress") -> int:
        """Add a new step to the shutdown sequence.

        Args:
            message: The step message to display.
            status: Initial status ("pending", "in_progress", "completed").

        Returns:
            Index of the added step for later updates.

        """
        self._steps.append(ShutdownStep(message=message, status=status))
        if self._live is not None:
            self._live.update(self._render_panel())
        return len(self._steps) - 1

    def complete_step(self, index: int) -> None:
        """Mark a step as completed."""
        if 0 <= index < len(self._steps):
            self._steps[index].status = "completed"
            if self._live is not None:
                self._live.update(self._render_panel())

    def complete_last_step(self) -> None:
        """Mark the last step as completed."""
        if self._steps:
            self.complete_step(len(self._steps) - 1)

    def finish(self) -> None:
        """Stop the live context and print the final panel."""
        if self._live is not None:
            self._live.stop()
            self._live = None

        if self._steps:
            self._console.print(self._render_panel())


# Global shutdown panel instance for cross-module access
_shutdown_panel: ShutdownPanel | None = None


def get_shutdown_panel() -> ShutdownPanel | None:
    """Get the current shutdown panel instance."""
    return _shutdown_panel


def set_shutdown_panel(panel: ShutdownPanel | None) -> None:
    """Set the global shutdown panel instance.

    Args:
        panel: The ShutdownPanel instance to set, or None to clear.

    """
    global _shutdown_panel
    _shutdown_panel = panel
