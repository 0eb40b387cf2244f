import logging

from typing import Iterable

from .store import SegmentStore


class CleanupManager:
    """
    Removes what an unsuccessful job left behind. Runs from inside error and cancel handling, so it never raises.
    """
    def __init__(self, store: SegmentStore, enabled: bool = True, logger: logging.Logger = None):
        self.store = store
        self.enabled = enabled
        self.logger = logger or logging.getLogger(__name__)

    def run(self, paths: Iterable[str], remove_intermediate: bool = False) -> int:
        if not self.enabled:
            self.logger.debug("Cleanup disabled, keeping downloaded segments")
            return 0

        removed = 0
        targets = list(paths)
        if remove_intermediate:
            targets.append(self.store.merged_path)

        for path in targets:
            try:
                if self.store.remove(path):
                    removed += 1

            except Exception as e:
                self.logger.warning(f"Cleanup of: {path} failed -> {e}")

        self.logger.info(f"Cleanup removed {removed} files")
        return removed
