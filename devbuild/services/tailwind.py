"""Tailwind CSS compilation for every ``*.tailwind.css`` source in the project."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

from devbuild.core.config import Config
from devbuild.core.errors import ConfigurationError
from devbuild.core.lifecycle import Service
from devbuild.core.model import FAILURE, SUCCESS
from devbuild.core.path_filter import PathFilter

SOURCE_SUFFIX = ".tailwind.css"
DEFAULT_POLL_INTERVAL = 0.2
DEFAULT_GRACE_PERIOD = 3.0
STDERR_TAIL_LINES = 20
LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TailwindSource:
    input: Path
    output: Path


@dataclass
class _Watcher:
    source: TailwindSource
    process: subprocess.Popen[str]
    stderr_tail: deque[str] = field(default_factory=lambda: deque(maxlen=STDERR_TAIL_LINES))
    reader: threading.Thread | None = None

    def drain(self, stream: IO[str]) -> None:
        with stream:
            for line in stream:
                line = line.rstrip()
                if line:
                    LOGGER.debug("tailwind %s: %s", self.source.input.name, line)
                    self.stderr_tail.append(line)


class TailwindService(Service):
    name = "tailwind"

    def __init__(
        self,
        config: Config,
        *,
        watch: bool = False,
        minify: bool | None = None,
        executable: Path | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        super().__init__()
        self.config = config
        self.watch = watch
        self.minify = bool(config.get("minify", False)) if minify is None else minify
        self.executable = executable or config.var_dir / "tailwindcss" / "tailwindcss"
        self.grace_period = grace_period
        self.poll_interval = poll_interval
        self._active_app_id: str | None = None
        self._processes: list[_Watcher] = []
        self._wake = threading.Event()

    @property
    def active_app_id(self) -> str | None:
        return self._active_app_id

    def set_active_app_id(self, app_id: str | None) -> None:
        self._active_app_id = app_id

    def collect_sources(self) -> list[TailwindSource]:
        root = self.config.apps_dir
        if self._active_app_id:
            root = root / self._active_app_id
        if not root.is_dir():
            return []

        path_filter = PathFilter.create_default(self.config.project_dir)
        sources: list[TailwindSource] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if not path_filter.should_ignore_directory(d))
            for filename in sorted(filenames):
                if not filename.lower().endswith(SOURCE_SUFFIX):
                    continue
                source = Path(dirpath) / filename
                output = source.with_name(filename[: -len(SOURCE_SUFFIX)] + ".css")
                sources.append(TailwindSource(input=source, output=output))
        return sources

    def process_count(self) -> int:
        return len(self._processes)

    def command(self, source: TailwindSource) -> list[str]:
        argv = [str(self.executable), "-i", str(source.input), "-o", str(source.output)]
        if self.minify:
            argv.append("--minify")
        if self.watch:
            argv.append("--watch")
        return argv

    def run(self) -> int:
        sources = self.collect_sources()
        if not sources:
            self.log("No Tailwind sources found")
            return SUCCESS

        if not self.executable.is_file() or not os.access(self.executable, os.X_OK):
            raise ConfigurationError(
                f"Tailwind executable not found at {self.executable}. Run 'devbuild install' first."
            )

        if self.watch:
            return self._watch(sources)
        return self._build(sources)

    def on_stop(self) -> None:
        self._wake.set()

    def start(self) -> int:
        self._wake.clear()
        return super().start()

    def _build(self, sources: list[TailwindSource]) -> int:
        status = SUCCESS
        for source in sources:
            if self.shutdown_requested:
                break
            self.log(f"Compiling {self._display(source.input)}")
            try:
                result = subprocess.run(self.command(source), check=False, capture_output=True, text=True)
            except OSError as exc:
                raise ConfigurationError(f"Could not run Tailwind executable {self.executable}: {exc}") from exc
            if result.returncode != 0:
                stderr = (result.stderr or "").strip()
                self.log(
                    f"Error: Tailwind failed for {self._display(source.input)} (exit {result.returncode})"
                    + (f": {stderr}" if stderr else ""),
                    level=logging.ERROR,
                )
                status = FAILURE
        return status

    def _watch(self, sources: list[TailwindSource]) -> int:
        status = SUCCESS
        try:
            for source in sources:
                self.log(f"Watching {self._display(source.input)}")
                process = subprocess.Popen(
                    self.command(source),
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    text=True,
                )
                watcher = _Watcher(source=source, process=process)
                if process.stderr is not None:
                    watcher.reader = threading.Thread(
                        target=watcher.drain, args=(process.stderr,), name="tailwind-stderr", daemon=True
                    )
                    watcher.reader.start()
                self._processes.append(watcher)

            while not self.shutdown_requested:
                for watcher in self._processes:
                    code = watcher.process.poll()
                    if code is None:
                        continue
                    if code != 0:
                        if watcher.reader is not None:
                            watcher.reader.join(timeout=1.0)
                        stderr = "\n".join(watcher.stderr_tail)
                        self.log(
                            f"Error: Tailwind watcher for {self._display(watcher.source.input)} exited with {code}"
                            + (f": {stderr}" if stderr else ""),
                            level=logging.ERROR,
                        )
                        return FAILURE
                if all(watcher.process.poll() is not None for watcher in self._processes):
                    return status
                self._wake.wait(self.poll_interval)
        except OSError as exc:
            raise ConfigurationError(f"Could not run Tailwind executable {self.executable}: {exc}") from exc
        finally:
            self._terminate_all()
        return status

    def _terminate_all(self) -> None:
        for watcher in self._processes:
            if watcher.process.poll() is None:
                watcher.process.terminate()
        for watcher in self._processes:
            try:
                watcher.process.wait(timeout=self.grace_period)
            except subprocess.TimeoutExpired:
                LOGGER.warning("Tailwind watcher for %s ignored terminate, killing", watcher.source.input)
                watcher.process.kill()
                watcher.process.wait()
            if watcher.reader is not None:
                watcher.reader.join(timeout=1.0)
        self._processes.clear()

    def _display(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.config.project_dir))
        except ValueError:
            return str(path)
