# This file contains all custom exceptions for the downloader. Every fatal one ends the job in the "error" state.
from typing import Optional


class DownloaderError(Exception):
    """
    Base class for everything the downloader raises on purpose.
    """
    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ConfigError(DownloaderError):
    """
    Raised when the job configuration is invalid, e.g. the output directory doesn't exist or the segments directory
    can't be created. The job never reaches the running state.
    """


class ManifestError(DownloaderError):
    """
    Raised when the m3u8 playlist is unreachable or can't be parsed into a list of segments.
    """


class TransportError(DownloaderError):
    """
    Raised when a request failed after the transport ran out of retries.
    """
    def __init__(self, message, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class MergeGapError(DownloaderError):
    """
    Raised when a segment is missing while merging. Merging never skips a gap silently.
    """
    def __init__(self, message, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class RemuxError(DownloaderError):
    """
    Raised when ffmpeg exits with a non-zero status or can't be started at all.
    The output attribute holds ffmpeg's diagnostic output (if there is any).
    """
    def __init__(self, message, output: str = ""):
        super().__init__(message)
        self.output = output


class StateError(DownloaderError):
    """
    Raised when download() is called on a job that already left the pending state.
    """
