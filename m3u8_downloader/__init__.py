__all__ = ["M3U8Downloader", "DownloadOptions", "BaseCore", "Callback", "JobStatus", "SegmentRef", "config", "errors",
           "setup_logger"]


from m3u8_downloader.modules import errors
from m3u8_downloader.modules.config import config, DownloadOptions
from m3u8_downloader.modules.progress_bars import Callback
from m3u8_downloader.modules.types import JobStatus, SegmentRef
from m3u8_downloader.base import BaseCore, setup_logger
from m3u8_downloader.downloader import M3U8Downloader
