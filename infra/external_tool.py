#!/usr/bin/env python3
"""
Runs the DjVu encoder binaries as child processes.

One call starts one process and blocks until it exits, polling a
CancelToken at a sub-second interval. Cancelling terminates the child
and raises Cancelled; a failed start or a non-zero exit raises
ExternalToolFailure.
"""

import re
import subprocess
import threading
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from pipeline.publish.errors import Cancelled, ExternalToolFailure


PROGRESS_PATTERN = re.compile(r"^\[(\d+(?:\.\d+)?)%\]$")


class CancelToken:
    """Cooperative cancellation flag; a child token is also cancelled by its parent."""

    def __init__(self, parent: Optional["CancelToken"] = None):
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.is_cancelled()

    def throw_if_cancelled(self) -> None:
        if self.is_cancelled():
            raise Cancelled("Processing was cancelled")

    def child(self) -> "CancelToken":
        return CancelToken(parent=self)


def parse_progress(line: str) -> Optional[float]:
    """Return the percentage of a "[NN%]" marker, or None."""
    match = PROGRESS_PATTERN.match(line.strip())
    if not match:
        return None
    return float(match.group(1))


class ExternalToolRunner:
    def __init__(self, poll_interval: float = 0.25, logger=None):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.poll_interval = poll_interval
        self.logger = logger

    def run(self, executable: str, args: Sequence[str], cancel_token: Optional[CancelToken] = None,
            cwd: Optional[Path] = None) -> int:
        return self._run(executable, args, cancel_token, cwd, None)

    def run_with_progress(self, executable: str, args: Sequence[str],
                          progress_callback: Callable[[float], None],
                          cancel_token: Optional[CancelToken] = None,
                          cwd: Optional[Path] = None) -> int:
        return self._run(executable, args, cancel_token, cwd, progress_callback)

    def _run(self, executable: str, args: Sequence[str], cancel_token: Optional[CancelToken],
             cwd: Optional[Path], progress_callback: Optional[Callable[[float], None]]) -> int:
        cancel_token = cancel_token or CancelToken()
        cancel_token.throw_if_cancelled()

        command: List[str] = [executable] + [str(a) for a in args]
        if self.logger:
            self.logger.debug("Running external tool", command=" ".join(command))

        try:
            proc = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=str(cwd) if cwd else None,
            )
        except OSError as e:
            raise ExternalToolFailure(executable, list(args), None, message=str(e)) from e

        output_tail: List[str] = []
        reader = threading.Thread(
            target=self._read_output,
            args=(proc, progress_callback, output_tail),
            daemon=True,
        )
        reader.start()

        while True:
            try:
                proc.wait(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel_token.is_cancelled():
                    self._terminate(proc)
                    reader.join(timeout=self.poll_interval * 4)
                    raise Cancelled(f"{executable} was terminated on cancel")

        reader.join()

        if proc.returncode != 0:
            message = f"exit code {proc.returncode}"
            if output_tail:
                message += f": {output_tail[-1]}"
            raise ExternalToolFailure(executable, list(args), proc.returncode, message=message)
        return proc.returncode

    @staticmethod
    def _read_output(proc: subprocess.Popen, progress_callback, output_tail: List[str]) -> None:
        for line in proc.stdout:
            line = line.rstrip("\n")
            if not line:
                continue
            percent = parse_progress(line)
            if percent is not None:
                if progress_callback:
                    progress_callback(percent)
                continue
            output_tail.append(line)
            del output_tail[:-20]
        proc.stdout.close()

    def _terminate(self, proc: subprocess.Popen) -> None:
        proc.terminate()
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
        if self.logger:
            self.logger.warning("External tool terminated", pid=proc.pid)
