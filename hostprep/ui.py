#!/usr/bin/env python3
"""
Nord-themed console helpers shared by every provisioning step.
"""

import logging
import shutil
from typing import Dict, List, Optional

import pyfiglet
from rich import box
from rich.align import Align
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from hostprep import APP_NAME, APP_SUBTITLE, VERSION

logger = logging.getLogger("hostprep")


# ----------------------------------------------------------------
# Nord-Themed Colors and Theme Setup
# ----------------------------------------------------------------
class NordColors:
    """Nord color palette definitions for consistent UI styling."""

    POLAR_NIGHT_1: str = "#2E3440"
    POLAR_NIGHT_2: str = "#3B4252"
    POLAR_NIGHT_3: str = "#434C5E"
    POLAR_NIGHT_4: str = "#4C566A"
    SNOW_STORM_1: str = "#D8DEE9"
    SNOW_STORM_2: str = "#E5E9F0"
    SNOW_STORM_3: str = "#ECEFF4"
    FROST_1: str = "#8FBCBB"
    FROST_2: str = "#88C0D0"
    FROST_3: str = "#81A1C1"
    FROST_4: str = "#5E81AC"
    RED: str = "#BF616A"
    ORANGE: str = "#D08770"
    YELLOW: str = "#EBCB8B"
    GREEN: str = "#A3BE8C"
    PURPLE: str = "#B48EAD"

    @classmethod
    def get_frost_gradient(cls, steps: int = 4) -> List[str]:
        """Returns a gradient using the frost color palette."""
        frosts = [cls.FROST_1, cls.FROST_2, cls.FROST_3, cls.FROST_4]
        return frosts[:steps]


nord_theme = Theme(
    {
        "banner": f"bold {NordColors.FROST_2}",
        "header": f"bold {NordColors.FROST_2}",
        "command": f"bold {NordColors.FROST_3}",
        "info": NordColors.GREEN,
        "warning": NordColors.YELLOW,
        "error": NordColors.RED,
        "debug": NordColors.POLAR_NIGHT_4,
        "success": NordColors.GREEN,
    }
)

console = Console(theme=nord_theme)

STATUS_STYLES: Dict[str, str] = {
    "pending": "debug",
    "in_progress": "warning",
    "success": "success",
    "failed": "error",
    "skipped": "warning",
}

STATUS_ICONS: Dict[str, str] = {
    "pending": "?",
    "in_progress": "⋯",
    "success": "✓",
    "failed": "✗",
    "skipped": "–",
}


# ----------------------------------------------------------------
# UI Helper Functions
# ----------------------------------------------------------------
def create_header(title: str = APP_NAME) -> Panel:
    """
    Generate an ASCII art header with a frost gradient using Pyfiglet.
    The banner is built line-by-line into a Rich Text object to avoid stray markup tokens.
    """
    term_width, _ = shutil.get_terminal_size((80, 24))
    fonts: List[str] = ["slant", "small", "mini"]
    if term_width < 60:
        fonts = fonts[1:]

    ascii_art = ""
    for font in fonts:
        try:
            fig = pyfiglet.Figlet(font=font, width=min(term_width - 10, 120))
            ascii_art = fig.renderText(title)
            if ascii_art.strip():
                break
        except pyfiglet.FigletError as e:
            logger.debug(f"Font {font} failed: {e}")

    if not ascii_art.strip():
        ascii_art = f"=== {title} ===\n"

    ascii_lines = [line for line in ascii_art.splitlines() if line.strip()]
    colors = NordColors.get_frost_gradient(len(ascii_lines))
    combined_text = Text()

    for i, line in enumerate(ascii_lines):
        color = colors[i % len(colors)]
        combined_text.append(Text(line, style=f"bold {color}"))
        if i < len(ascii_lines) - 1:
            combined_text.append("\n")

    return Panel(
        Align.center(combined_text),
        border_style=NordColors.FROST_1,
        padding=(1, 2),
        title=Text(f"v{VERSION}", style=f"bold {NordColors.SNOW_STORM_2}"),
        title_align="right",
        subtitle=Text(APP_SUBTITLE, style=f"bold {NordColors.SNOW_STORM_1}"),
        subtitle_align="center",
        box=box.ROUNDED,
    )


# Records logged by the print_* helpers carry this flag; the console handler
# drops them since the helper has already printed the message.
ECHOED = "echoed"


def _log(level: int, text: str) -> None:
    logger.log(level, text, extra={ECHOED: True})


def print_message(
    text: str, style: str = NordColors.FROST_2, prefix: str = "•"
) -> None:
    """Print a styled message with a prefix. The text is not parsed as markup."""
    console.print(Text(f"{prefix} {text}", style=style), highlight=False)


def print_success(message: str) -> None:
    """Print a success message."""
    print_message(message, NordColors.GREEN, "✓")
    _log(logging.INFO, f"SUCCESS: {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    print_message(message, NordColors.YELLOW, "⚠")
    _log(logging.WARNING, message)


def print_error(message: str) -> None:
    """Print an error message."""
    print_message(message, NordColors.RED, "✗")
    _log(logging.ERROR, message)


def print_step(message: str) -> None:
    """Print a step message in a workflow."""
    print_message(message, NordColors.FROST_2, "→")
    _log(logging.INFO, message)


def print_command(command: str) -> None:
    """Echo a command line before it runs (or instead of running it, in dry-run mode)."""
    console.print(Text(f"> {command}", style="command"))


def print_section(title: str) -> None:
    """Print a section header."""
    console.print()
    console.print(Text(title, style=f"bold {NordColors.FROST_3}"))
    console.print(Text("─" * len(title), style=NordColors.FROST_3))
    _log(logging.INFO, f"== {title} ==")


def display_panel(
    message: str, style: str = NordColors.FROST_2, title: Optional[str] = None
) -> None:
    """Display a styled panel with a message."""
    panel = Panel(
        Text(message, style=style),
        border_style=f"{style}",
        padding=(1, 2),
        title=Text(title, style=f"bold {style}") if title else None,
        box=box.ROUNDED,
    )
    console.print(panel)


def print_status_report(status: Dict[str, Dict[str, str]]) -> None:
    """Print a status report table for all provisioning steps."""
    table = Table(
        show_header=True,
        header_style=f"bold {NordColors.FROST_1}",
        border_style=NordColors.FROST_3,
        box=box.ROUNDED,
        title=f"[bold {NordColors.FROST_2}]Provisioning Status Report[/]",
        title_justify="center",
        expand=True,
    )
    table.add_column("Step", style=f"bold {NordColors.FROST_2}")
    table.add_column("Status", justify="center")
    table.add_column("Message", style=NordColors.SNOW_STORM_1, ratio=3)

    counts: Dict[str, int] = {key: 0 for key in STATUS_STYLES}
    for key, data in status.items():
        state = data["status"].lower()
        counts[state] = counts.get(state, 0) + 1
        style = STATUS_STYLES.get(state, "info")
        table.add_row(
            key.replace("_", " ").title(),
            Text(f"{STATUS_ICONS.get(state, '?')} {state.upper()}", style=style),
            Text(data["message"]),
        )

    summary = Text()
    summary.append("Summary: ", style=f"bold {NordColors.FROST_3}")
    summary.append(f"{counts['success']} Succeeded", style=f"bold {NordColors.GREEN}")
    summary.append(" | ")
    summary.append(f"{counts['failed']} Failed", style=f"bold {NordColors.RED}")
    summary.append(" | ")
    summary.append(f"{counts['skipped']} Skipped", style=f"bold {NordColors.YELLOW}")
    summary.append(" | ")
    summary.append(
        f"{counts['pending']} Pending", style=f"bold {NordColors.POLAR_NIGHT_4}"
    )

    console.print(
        Panel(
            Group(table, Align.center(summary)),
            border_style=NordColors.FROST_4,
            padding=(0, 1),
            box=box.ROUNDED,
        )
    )
