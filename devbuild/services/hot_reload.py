"""Polling filesystem watcher with debounced reloads and derived-file rules."""

from __future__ import annotations

import fnmatch
import logging
import os
import subprocess
import threading
import time
from collections.abc import Callable, Hashable, Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

from devbuild.core.config import Config
from devbuild.core.errors import ConfigurationError, WatchBackendError
from devbuild.core.lifecycle import Service
from devbuild.core.model import SUCCESS, ChangeEvent, FileTransformationRule
from devbuild.core.path_filter import PathFilter

DEFAULT_DEBOUNCE_DELAY = 0.3
DEFAULT_POLL_INTERVAL = 0.25
DEFAULT_EXTENSIONS = ("php", "twig", "html", "css", "js", "ts", "json", "yaml", "yml", "py", "svg")
_RELOAD_KEY = "reload"
_WILDCARDS = set("*?[")
LOGGER = logging.getLogger(__name__)

ReloadNotifier = Callable[[Sequence[Path]], None]
Transformer = Callable[[FileTransformationRule, Path, Path], bool]


class Debouncer:
    """Trailing-edge deadlines keyed by arbitrary values.

    Touching a key pushes its deadline to ``now + delay``; ``due(now)``
    pops every key whose deadline has passed. The caller supplies the clock.
    """

    def __init__(self) -> None:
        self._deadlines: dict[Hashable, float] = {}

    def touch(self, key: Hashable, now: float, delay: float) -> None:
        self._deadlines[key] = now + delay

    def due(self, now: float) -> list[Hashable]:
        ready = sorted((deadline, i, key) for i, (key, deadline) in enumerate(self._deadlines.items()) if deadline <= now)
        for _, _, key in ready:
            del self._deadlines[key]
        return [key for _, _, key in ready]

    def pending(self) -> int:
        return len(self._deadlines)

    def next_deadline(self) -> float | None:
        return min(self._deadlines.values(), default=None)

    def clear(self) -> None:
        self._deadlines.clear()


def parse_transformation_rules(raw: Mapping[str, Any] | None) -> tuple[FileTransformationRule, ...]:
    rules: list[FileTransformationRule] = []
    for pattern, spec in (raw or {}).items():
        spec = spec or {}
        if not isinstance(spec, Mapping) or not spec.get("output_pattern"):
            raise ConfigurationError(f"File transformation '{pattern}' needs an output_pattern")
        command = spec.get("command") or ()
        if isinstance(command, str):
            command = command.split()
        rules.append(
            FileTransformationRule(
                pattern=str(pattern),
                output_pattern=str(spec["output_pattern"]),
                debounce_delay=float(spec.get("debounce_delay", 0.5)),
                reload=bool(spec.get("reload", True)),
                command=tuple(str(arg) for arg in command),
            )
        )
    return tuple(rules)


def derived_name(rule: FileTransformationRule, source: Path) -> str:
    """``app.tailwind.css`` under ``*.tailwind.css`` becomes ``app``."""
    basename = source.name
    if rule.pattern.startswith("*"):
        suffix = rule.pattern[1:]
        if suffix and not _WILDCARDS & set(suffix) and basename.lower().endswith(suffix.lower()):
            return basename[: -len(suffix)]
    return source.stem


def output_path(rule: FileTransformationRule, source: Path) -> Path:
    rendered = rule.output_pattern.replace("{path}", str(source.parent)).replace("{name}", derived_name(rule, source))
    return Path(rendered)


class HotReloadService(Service):
    name = "hot-reload"

    def __init__(
        self,
        config: Config,
        options: Mapping[str, Any] | None = None,
        *,
        notifier: ReloadNotifier | None = None,
        transformer: Transformer | None = None,
        path_filter: PathFilter | None = None,
    ) -> None:
        super().__init__()
        options = dict(options or {})
        self.config = config
        self.project_dir = config.project_dir
        self.watch_dirs = [str(d) for d in options.get("watch_dirs", [])]
        self.debounce_delay = float(options.get("debounce_delay", DEFAULT_DEBOUNCE_DELAY))
        self.poll_interval = float(options.get("poll_interval", DEFAULT_POLL_INTERVAL))
        extensions = options.get("extended_extensions") or DEFAULT_EXTENSIONS
        self.extensions = frozenset(str(e).strip().lstrip(".").lower() for e in extensions)
        self.rules = parse_transformation_rules(options.get("file_transformations"))
        self.path_filter = path_filter or PathFilter.create_default(
            self.project_dir, extra_patterns=options.get("ignore", ())
        )
        self._notifier = notifier
        self._transformer = transformer
        self._targets: list[Path] = []
        self._snapshot: dict[Path, tuple[int, int]] = {}
        self._pending_reload: dict[Path, None] = {}
        self._reload_debouncer = Debouncer()
        self._transform_debouncer = Debouncer()
        self._wake = threading.Event()
        self.reload_count = 0
        self.transform_count = 0

    @property
    def targets(self) -> list[Path]:
        return list(self._targets)

    def resolve_watch_targets(self) -> list[Path]:
        targets: list[Path] = []
        for entry in self.watch_dirs:
            path = Path(entry)
            if not path.is_absolute():
                path = self.project_dir / path
            if not path.is_dir():
                self.log(f"Warning: watch directory not found, skipping: {path}", level=logging.WARNING)
                continue
            if path not in targets:
                targets.append(path)
        self._targets = targets
        return targets

    def is_relevant(self, path: Path) -> bool:
        if path.suffix.lstrip(".").lower() not in self.extensions:
            return False
        return not self.path_filter.should_ignore_path(path)

    def matching_rules(self, path: Path) -> list[FileTransformationRule]:
        basename = path.name.lower()
        return [rule for rule in self.rules if fnmatch.fnmatchcase(basename, rule.pattern.lower())]

    def prime(self) -> None:
        if not self._targets:
            self.resolve_watch_targets()
        self._snapshot = self._scan()

    def detect_changes(self, now: float | None = None) -> list[ChangeEvent]:
        now = time.monotonic() if now is None else now
        current = self._scan()
        previous = self._snapshot
        changed = [path for path, sig in current.items() if previous.get(path) != sig]
        changed.extend(path for path in previous if path not in current)
        self._snapshot = current
        return [ChangeEvent(path=path, detected_at=now) for path in sorted(changed)]

    def poll(self, now: float | None = None) -> None:
        """Run one scan/debounce/fire cycle of the watch loop."""
        now = time.monotonic() if now is None else now
        for event in self.detect_changes(now):
            if not self.is_relevant(event.path):
                continue
            LOGGER.debug("Change detected: %s", event.path)
            self._pending_reload[event.path] = None
            self._reload_debouncer.touch(_RELOAD_KEY, now, self.debounce_delay)
        self.flush(now)

    def flush(self, now: float) -> None:
        if self._reload_debouncer.due(now):
            batch = list(self._pending_reload)
            self._pending_reload.clear()
            reload_paths: list[Path] = []
            for path in batch:
                rules = self.matching_rules(path)
                for rule in rules:
                    self._transform_debouncer.touch((rule, path), now, rule.debounce_delay)
                if all(rule.reload for rule in rules):
                    reload_paths.append(path)
            if reload_paths:
                self.reload(reload_paths)

        for key in self._transform_debouncer.due(now):
            rule, path = key  # type: ignore[misc]
            self.transform(rule, path)

    def reload(self, paths: Iterable[Path] = ()) -> None:
        changed = list(paths)
        self.reload_count += 1
        shown = ", ".join(self._display(p) for p in changed[:5])
        more = f" (+{len(changed) - 5} more)" if len(changed) > 5 else ""
        self.log(f"Reloading: {shown}{more}" if changed else "Reloading")
        if self._notifier is not None:
            self._notifier(changed)

    def transform(self, rule: FileTransformationRule, source: Path) -> bool:
        if not source.is_file():
            LOGGER.debug("Skipping transformation of vanished file %s", source)
            return False
        output = output_path(rule, source)
        if output.resolve() == source.resolve():
            self.log(f"Warning: transformation of {self._display(source)} would overwrite its source", level=logging.WARNING)
            return False

        self.transform_count += 1
        self.log(f"Transforming {self._display(source)} -> {self._display(output)}")
        if self._transformer is not None:
            ok = self._transformer(rule, source, output)
        elif rule.command:
            ok = self._run_command(rule, source, output)
        else:
            self.log(f"Warning: no transformer configured for {rule.pattern}", level=logging.WARNING)
            return False
        if not ok:
            self.log(f"Error: transformation failed for {self._display(source)}", level=logging.ERROR)
        return ok

    def run(self) -> int:
        targets = self.resolve_watch_targets()
        if not targets:
            self.log("No watch directories found, hot reload is idle")
            return SUCCESS

        self.prime()
        self.log(f"Watching {', '.join(self._display(t) for t in targets)}")
        while not self.shutdown_requested:
            self.poll()
            self._wake.wait(self.poll_interval)
        return SUCCESS

    def on_stop(self) -> None:
        self._wake.set()

    def start(self) -> int:
        self._wake.clear()
        return super().start()

    def _run_command(self, rule: FileTransformationRule, source: Path, output: Path) -> bool:
        argv = [arg.replace("{input}", str(source)).replace("{output}", str(output)) for arg in rule.command]
        try:
            result = subprocess.run(argv, check=False, capture_output=True, text=True, cwd=self.project_dir)
        except OSError as exc:
            self.log(f"Error: could not run {argv[0]}: {exc}", level=logging.ERROR)
            return False
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            if stderr:
                self.log(stderr, level=logging.ERROR)
            return False
        return True

    def _scan(self) -> dict[Path, tuple[int, int]]:
        snapshot: dict[Path, tuple[int, int]] = {}

        def _on_error(exc: OSError) -> None:
            if isinstance(exc, FileNotFoundError):
                return
            raise WatchBackendError(f"Watching {exc.filename} failed: {exc}") from exc

        for root in self._targets:
            for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
                dirnames[:] = [d for d in dirnames if not self.path_filter.should_ignore_directory(d)]
                for filename in filenames:
                    path = Path(dirpath) / filename
                    try:
                        st = path.stat()
                    except FileNotFoundError:
                        continue
                    except OSError as exc:
                        raise WatchBackendError(f"Could not stat {path}: {exc}") from exc
                    snapshot[path] = (st.st_mtime_ns, st.st_size)
        return snapshot

    def _display(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.project_dir))
        except ValueError:
            return str(path)
