import os
import logging

from .errors import ConfigError

MERGED_NAME = "merged"


class SegmentStore:
    """
    The working directory of a job: one file per segment index plus the intermediate merge file.
    Two jobs must never share a directory, the file names only depend on the index.
    """
    def __init__(self, directory: str, suffix: str = ".ts", logger: logging.Logger = None):
        self.directory = os.path.abspath(directory)
        self.suffix = suffix
        self.logger = logger or logging.getLogger(__name__)

    def ensure(self) -> None:
        if os.path.isdir(self.directory):
            return

        try:
            os.makedirs(self.directory, exist_ok=True)
            self.logger.debug(f"Created segments directory: {self.directory}")

        except OSError as e:
            raise ConfigError(f"Segments directory: {self.directory} can't be created: {e}") from e

    def path_for(self, index: int) -> str:
        return os.path.join(self.directory, f"segment{index:05d}{self.suffix}")

    @property
    def merged_path(self) -> str:
        return os.path.join(self.directory, f"{MERGED_NAME}{self.suffix}")

    def exists(self, index: int) -> bool:
        return os.path.isfile(self.path_for(index))

    def write(self, index: int, data: bytes) -> str:
        """
        Writes the segment to a temporary file first and moves it in place afterwards, so a segment file is either
        complete or not there at all.
        """
        path = self.path_for(index)
        part_path = f"{path}.part"
        try:
            with open(part_path, "wb") as file:
                file.write(data)

            os.replace(part_path, path)

        except OSError:
            self.remove(part_path)
            raise

        return path

    def remove(self, path: str) -> bool:
        """Best-effort delete. Returns True if the file was removed."""
        try:
            os.remove(path)
            return True

        except FileNotFoundError:
            return False

        except OSError as e:
            self.logger.warning(f"Couldn't remove: {path} -> {e}")
            return False
