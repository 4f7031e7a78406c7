"""Browser-driven watcher components."""

from avito_watcher.watchers.base_watcher import BaseWatcher
from avito_watcher.watchers.change_detector import ChangeDetector, WatchMode
from avito_watcher.watchers.noise import NoiseFilter

__all__ = ["BaseWatcher", "ChangeDetector", "NoiseFilter", "WatchMode"]
