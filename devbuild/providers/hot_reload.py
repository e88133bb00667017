"""Hot reload provider: watches the tree and signals clients to refresh."""

from __future__ import annotations

import json
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from devbuild.core.config import Config
from devbuild.core.lifecycle import LoggerSink
from devbuild.core.registry import BaseProvider
from devbuild.services.hot_reload import HotReloadService, ReloadNotifier


def signal_file_notifier(path: Path) -> ReloadNotifier:
    """Write ``{files, timestamp}`` to ``path`` on every reload for clients to poll."""

    def _notify(files: Sequence[Path]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"files": [str(f) for f in files], "timestamp": time.time()}
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(json.dumps(payload), encoding="utf-8")
        tmp.replace(path)

    return _notify


class HotReloadProvider(BaseProvider):
    name = "hot_reload"
    service_order = 50

    def __init__(
        self,
        config: Config,
        logger: LoggerSink | None = None,
        *,
        notifier: ReloadNotifier | None = None,
    ) -> None:
        self.config = config
        self.logger = logger
        self.notifier = notifier

    def watch(self, options: Mapping[str, Any]) -> int:
        return self.create_service(options).start()

    def create_service(self, options: Mapping[str, Any]) -> HotReloadService:
        notifier = self.notifier
        signal_file = options.get("signal_file")
        if notifier is None and signal_file:
            path = Path(str(signal_file))
            notifier = signal_file_notifier(path if path.is_absolute() else self.config.project_dir / path)
        service = HotReloadService(self.config, options, notifier=notifier)
        service.set_logger(self.logger)
        return service
