"""Rich-based progress display for publishing runs.

One bar per pipeline stage. Stages report percentages (the text encoder
reports its own markers, the per-page stages report processed/total),
and a stage that had nothing to do is shown as skipped.
"""

from rich.progress import (
    Progress,
    BarColumn,
    TextColumn,
    TaskProgressColumn,
    TimeElapsedColumn,
)
from rich.console import Console
import threading
from typing import Dict, Optional, Sequence


STAGE_LABELS = {
    "export": "Export layers",
    "encode_raster": "Encode pictures",
    "encode_text": "Encode text",
    "assemble": "Assemble pages",
    "postprocess": "Postprocess",
}


class RichStageProgress:
    def __init__(self, stages: Sequence[str] = tuple(STAGE_LABELS), prefix: str = "",
                 width: int = 40, console: Optional[Console] = None):
        self.stages = list(stages)
        self.prefix = prefix

        self._progress = Progress(
            TextColumn(f"[bold cyan]{prefix}[/bold cyan]{{task.description}}"),
            BarColumn(
                bar_width=width,
                style="grey23",
                complete_style="green",
                finished_style="bold green",
            ),
            TaskProgressColumn(style="bold cyan"),
            TextColumn("[dim]•[/dim]"),
            TextColumn("{task.fields[state]}", justify="right"),
            TextColumn("[dim]•[/dim]"),
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )

        self._task_ids: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._started = False

    def __enter__(self):
        self._progress.__enter__()
        for stage in self.stages:
            self._task_ids[stage] = self._progress.add_task(
                STAGE_LABELS.get(stage, stage), total=100, state="waiting", start=False
            )
        self._started = True
        return self

    def __exit__(self, *args):
        self._started = False
        return self._progress.__exit__(*args)

    def update(self, stage: str, percent: float, state: str = "in_progress"):
        """Callback for the publishing task: (stage, percent, state)."""
        if not self._started:
            self.__enter__()

        key = str(getattr(stage, "value", stage))
        state_text = str(getattr(state, "value", state))
        with self._lock:
            task_id = self._task_ids.get(key)
            if task_id is None:
                return
            self._progress.start_task(task_id)
            if state_text == "skipped":
                self._progress.update(task_id, completed=100, state="[dim]skipped[/dim]")
                self._progress.stop_task(task_id)
            elif state_text == "completed":
                self._progress.update(task_id, completed=100, state="[green]done[/green]")
                self._progress.stop_task(task_id)
            else:
                self._progress.update(task_id, completed=min(percent, 100.0), state="running")

    __call__ = update

    def finish(self, message: str = ""):
        if self._started:
            self.__exit__(None, None, None)

        if message:
            print(message)
