"""
Rich-based progress panel for entity imports.

Shows a live-updating panel (rows imported, rate, elapsed time) on stderr
so the terminal does not scroll while a large file is loaded into SQLite.
"""

import time
from typing import Any, Dict, Optional

from rich import box
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


class ImportProgress:
    """
    Context manager for displaying import progress.

    Usage:
        with ImportProgress("Importing entities.json", total=len(entities)) as progress:
            store.import_entities(entities, on_row=progress.advance)
    """

    def __init__(
        self,
        title: str = "Importing",
        total: Optional[int] = None,
        update_interval: int = 500,
        console: Optional[Console] = None
    ):
        """
        Args:
            title: Title for the progress panel
            total: Number of rows expected, when known
            update_interval: Redraw every N rows
            console: Rich console to draw on (stderr by default)
        """
        self.title = title
        self.total = total
        self.update_interval = update_interval
        self.console = console or Console(stderr=True)

        self.rows = 0
        self.start_time: float = 0
        self.live: Optional[Live] = None

    def __enter__(self):
        self.start_time = time.time()
        self.live = Live(self._make_panel(), console=self.console, refresh_per_second=4)
        self.live.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.live:
            self.live.update(self._make_panel())
            self.live.__exit__(exc_type, exc_val, exc_tb)
        return False

    def advance(self, rows: int) -> None:
        """Record the running row count; redraws every ``update_interval`` rows."""
        self.rows = rows
        if self.live and rows % self.update_interval == 0:
            self.live.update(self._make_panel())

    def metrics(self) -> Dict[str, Any]:
        elapsed = time.time() - self.start_time if self.start_time else 0.0
        metrics: Dict[str, Any] = {}
        if self.total is not None:
            metrics["Rows"] = f"{self.rows:,} / {self.total:,}"
        else:
            metrics["Rows"] = f"{self.rows:,}"
        metrics["Rate"] = f"{self.rows / elapsed:,.1f}/s" if elapsed > 0 else "-"
        minutes, seconds = divmod(int(elapsed), 60)
        metrics["Elapsed"] = f"{minutes:02d}:{seconds:02d}"
        return metrics

    def _make_panel(self) -> Panel:
        grid = Table.grid(padding=(0, 2))
        grid.add_column(justify="left", no_wrap=True)
        grid.add_column(justify="right", no_wrap=True)
        for key, value in self.metrics().items():
            grid.add_row(Text(f"{key}:", style="bold grey50"), Text(value, style="bright_cyan"))
        return Panel(grid, title=self.title, box=box.SIMPLE, border_style="bright_black")
