"""
Append-only daily log file, mirrored to the terminal.

Each line is written, flushed and (with ``durable=True``) fsync'ed before the
next one, so a crash loses at most the line being written.
"""

from __future__ import annotations

import asyncio
import os
import threading
from pathlib import Path
from typing import Callable, Optional, Sequence, TextIO

import typer

from ..utils import log_file_date
from .types import LineSink


def default_log_path(log_dir: Path) -> Path:
    return Path(log_dir) / f"market-events-{log_file_date()}.log"


class FileSink(LineSink):
    def __init__(
        self,
        path: Path,
        *,
        durable: bool = True,
        echo: Optional[Callable[[str], None]] = typer.echo,
        mkdirs: bool = True,
    ):
        self.path = Path(path)
        if mkdirs:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._durable = durable
        self._echo = echo
        self._fh: Optional[TextIO] = None
        # append runs on worker threads (write, loguru enqueue) as well as the loop
        self._lock = threading.Lock()

    @classmethod
    def for_directory(cls, log_dir: Path, **kwargs) -> "FileSink":
        return cls(default_log_path(log_dir), **kwargs)

    def _file(self) -> TextIO:
        if self._fh is None or self._fh.closed:
            self._fh = open(self.path, "a", encoding="utf-8")
        return self._fh

    def append(self, line: str) -> None:
        line = line.rstrip("\n")
        with self._lock:
            fh = self._file()
            fh.write(line + "\n")
            fh.flush()
            if self._durable:
                os.fsync(fh.fileno())
        if self._echo is not None:
            self._echo(line)

    def _append_all(self, lines: Sequence[str]) -> None:
        for line in lines:
            self.append(line)

    async def write(self, lines: Sequence[str]) -> None:
        """Append ``lines`` in order on a worker thread, off the event loop."""
        if lines:
            await asyncio.to_thread(self._append_all, list(lines))

    def _sync(self) -> None:
        with self._lock:
            if self._fh is not None and not self._fh.closed:
                self._fh.flush()
                os.fsync(self._fh.fileno())

    async def flush(self) -> None:
        await asyncio.to_thread(self._sync)

    def close(self) -> None:
        with self._lock:
            if self._fh is not None and not self._fh.closed:
                self._fh.close()
            self._fh = None
