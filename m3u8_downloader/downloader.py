"""
A job is one download: playlist -> segments -> merged file -> (optionally) remuxed file.
It runs once; create a new M3U8Downloader to download again.
"""
import os
import uuid
import time
import logging
import threading

from typing import Callable, Dict, List, Optional

from .base import BaseCore, setup_logger
from .modules.cleanup import CleanupManager
from .modules.config import DownloadOptions
from .modules.errors import ConfigError, DownloaderError, StateError, TransportError
from .modules.events import EventEmitter
from .modules.merger import merge_segments
from .modules.pool import FetchWorkerPool
from .modules.remux import remux
from .modules.store import SegmentStore
from .modules.types import JobStatus, SegmentArtifact, SegmentRef
from .modules.utils import retry

INTERMEDIATE_DELETE_RETRIES = 3
INTERMEDIATE_DELETE_DELAY = 1.0


class M3U8Downloader:
    def __init__(self, m3u8_url: str, output: str, options: Optional[DownloadOptions] = None,
                 core: Optional[BaseCore] = None, **kwargs):
        """
        :param m3u8_url: URL of the playlist (a local file or inline #EXTM3U content works too)
        :param output: Path of the final file. Its directory has to exist.
        :param options: DownloadOptions, or pass the same names as keyword arguments
        :param core: BaseCore to use for the network, one is created from the options otherwise
        """
        if options is not None and kwargs:
            raise TypeError("Pass either options or keyword arguments, not both.")

        self.options = options or DownloadOptions(**kwargs)
        self.m3u8_url = m3u8_url
        self.output = os.path.abspath(output)
        self.segments_dir = self.options.segments_dir
        self.run_id = uuid.uuid4().hex[:8]
        self.logger = setup_logger("M3U8 - [Downloader]", level=logging.ERROR)

        # a core passed in belongs to the caller, one created here is closed when the job ends
        self._owns_core = core is None
        self.core = core or BaseCore(retries=self.options.retries, proxy=self.options.proxy)
        self.store = SegmentStore(self.segments_dir, suffix=self.options.suffix, logger=self.logger)
        self.cleaner = CleanupManager(self.store, enabled=self.options.clean, logger=self.logger)
        self.events = EventEmitter(logger=self.logger)
        self.queue = FetchWorkerPool(self.options.concurrency, logger=self.logger)

        self.status = JobStatus.PENDING
        self.error: Optional[Exception] = None
        self.segments: List[SegmentRef] = []
        self.total_segments = 0
        self.downloaded_segments = 0
        self.downloaded_files: List[str] = []
        self._output_written = False
        self._artifacts: Dict[int, SegmentArtifact] = {}
        self._lock = threading.Lock()
        self._state_changed = threading.Condition(self._lock)

    def enable_logging(self, log_file=None, level=logging.DEBUG):
        """Enables logging dynamically for the downloader and its network core."""
        self.logger = setup_logger(name="M3U8 - [Downloader]", log_file=log_file, level=level)
        for component in (self.store, self.cleaner, self.events, self.queue):
            component.logger = self.logger
        self.core.enable_logging(log_file=log_file, level=level)

    def on(self, event: str, handler: Callable) -> Callable:
        return self.events.on(event, handler)

    def off(self, event: str, handler: Callable) -> None:
        self.events.off(event, handler)

    def is_running(self) -> bool:
        return self.status == JobStatus.RUNNING

    @property
    def artifacts(self) -> List[SegmentArtifact]:
        with self._lock:
            return [self._artifacts[i] for i in sorted(self._artifacts)]

    def download(self) -> JobStatus:
        """
        Runs the whole job in the calling thread and returns the final status.
        The exception that ended the job (if any) is available as .error afterwards.
        """
        with self._lock:
            if self.status != JobStatus.PENDING:
                raise StateError(f"Job is {self.status.value}, only a pending job can be downloaded.")

        try:
            try:
                self._start()
                self._run()
                self._complete()

            except DownloaderError as e:
                self._fail(e)

            except Exception as e:
                self.logger.exception(f"[{self.run_id}] Unexpected error: {e}")
                self._fail(e)

            if self.status in (JobStatus.ERROR, JobStatus.CANCELED):
                leftovers = list(self.downloaded_files)
                if self._output_written:
                    leftovers.append(self.output)

                self.cleaner.run(leftovers, remove_intermediate=self.options.convert_to_mp4)

        finally:
            if self._owns_core:
                self.core.close()

        return self.status

    def _complete(self):
        # A pause after the last phase still has to be resumed before the job counts as completed
        while not self._transition(JobStatus.COMPLETED, from_states=(JobStatus.RUNNING,), event="completed"):
            if not self._wait_while_paused():
                return

        self.logger.info(f"[{self.run_id}] Completed: {self.output}")

    def _start(self):
        parent = os.path.dirname(self.output)
        if not os.path.isdir(parent):
            raise ConfigError(f"Output directory does not exist: {parent}")

        self.store.ensure()
        self._transition(JobStatus.RUNNING, from_states=(JobStatus.PENDING,), event="start")
        self.logger.info(f"[{self.run_id}] Started: {self.m3u8_url} -> {self.output}")

    def _run(self):
        segments = self.core.get_segments(self.m3u8_url, headers=self.options.headers, quality=self.options.quality)
        segments = segments[self.options.start_index:self.options.end_index]
        with self._lock:
            self.segments = segments
            self.total_segments = len(segments)

        self.logger.info(f"[{self.run_id}] {self.total_segments} segments to download "
                         f"(concurrency={self.options.concurrency})")

        self.queue.submit_all(self._make_task(ref) for ref in segments)

        if not self._wait_while_paused():
            return

        if self.options.merge_segments:
            target = self.store.merged_path if self.options.convert_to_mp4 else self.output
            self._output_written = not self.options.convert_to_mp4
            merged = merge_segments(
                self.store,
                [ref.index for ref in segments],
                target,
                should_continue=lambda: not self.status.is_terminal,
                delete_source=self.options.delete_segments,
                logger=self.logger,
            )
            if merged is None or not self._wait_while_paused():
                return

            if self.options.convert_to_mp4:
                self._convert(merged)

    def _convert(self, merged_path: str):
        self._output_written = True
        remux(
            merged_path,
            self.output,
            ffmpeg_path=self.options.ffmpeg_path,
            callback=lambda done, total: self.events.emit("remux_progress", done, total),
            logger=self.logger,
        )

        def delete_intermediate():
            if os.path.exists(merged_path):
                os.remove(merged_path)

        try:
            retry(delete_intermediate, retries=INTERMEDIATE_DELETE_RETRIES, delay=INTERMEDIATE_DELETE_DELAY,
                  logger=self.logger)

        except OSError as e:
            self.logger.warning(f"[{self.run_id}] Couldn't remove intermediate file: {merged_path} -> {e}")

        if not self.status.is_terminal:
            self.events.emit("converted", self.output)

    def _make_task(self, ref: SegmentRef):
        return lambda: self._download_segment(ref)

    def _download_segment(self, ref: SegmentRef) -> bool:
        """
        Fetches one segment. Returns False if the job is paused and the segment has to wait in the queue.
        """
        with self._lock:
            if self.status.is_terminal:
                return True

            if self.status == JobStatus.PAUSED:
                return False

        path = self.store.path_for(ref.index)
        if self.options.skip_exist_segments and self.store.exists(ref.index):
            self.logger.debug(f"[{self.run_id}] Segment {ref.index} exists, skipping download")
            self._record(SegmentArtifact(ref.index, path, skipped=True))
            return True

        t0 = time.perf_counter()
        try:
            data = self.core.fetch(ref.url, headers=self.options.headers, get_bytes=True)

        except TransportError as e:
            self.logger.error(f"[{self.run_id}] Segment {ref.index} failed: {ref.url} -> {e.message}")
            self._fail(e)
            raise

        with self._lock:
            if self.status.is_terminal:
                self.logger.debug(f"[{self.run_id}] Discarding segment {ref.index}, job is {self.status.value}")
                return True

        self.store.write(ref.index, data)
        self.logger.debug(f"[{self.run_id}] Segment {ref.index} done ({len(data)} bytes, "
                          f"{(time.perf_counter() - t0) * 1000:.2f} ms)")
        if not self._record(SegmentArtifact(ref.index, path)):
            # the job ended while writing, nobody would clean this file up
            self.store.remove(path)
        return True

    def _record(self, artifact: SegmentArtifact) -> bool:
        with self._lock:
            if self.status.is_terminal or artifact.index in self._artifacts:
                return False

            self._artifacts[artifact.index] = artifact
            if not artifact.skipped:
                self.downloaded_files.append(artifact.path)
            self.downloaded_segments += 1
            progress = {
                "downloaded_file": artifact.path,
                "downloaded": self.downloaded_segments,
                "total": self.total_segments,
            }

        self.events.emit("progress", progress)
        return True

    def _transition(self, to: JobStatus, from_states, event: str, *args) -> bool:
        with self._lock:
            if self.status not in from_states:
                return False

            self.logger.debug(f"[{self.run_id}] {self.status.value} -> {to.value}")
            self.status = to
            self._state_changed.notify_all()

        self.events.emit(event, *args)
        return True

    def _wait_while_paused(self) -> bool:
        """Blocks while the job is paused. Returns True if the job is running afterwards."""
        with self._lock:
            while self.status == JobStatus.PAUSED:
                self._state_changed.wait()
            return self.status == JobStatus.RUNNING

    def _fail(self, error: Exception):
        with self._lock:
            if self.status.is_terminal:
                return

            self.status = JobStatus.ERROR
            self.error = error
            self._state_changed.notify_all()

        self.queue.clear()
        message = getattr(error, "message", None) or str(error)
        self.logger.error(f"[{self.run_id}] Job failed: {message}")
        self.events.emit("error", message)

    def pause(self):
        """Stops starting new segments. Segments already downloading finish."""
        with self._lock:
            if self.status != JobStatus.RUNNING:
                return

            # running in queue will not be paused
            self.queue.pause()
            self.status = JobStatus.PAUSED
            self._state_changed.notify_all()

        self.logger.info(f"[{self.run_id}] Paused")
        self.events.emit("paused")

    def resume(self):
        with self._lock:
            if self.status != JobStatus.PAUSED:
                return

            self.status = JobStatus.RUNNING
            self.queue.resume()
            self._state_changed.notify_all()

        self.logger.info(f"[{self.run_id}] Resumed")
        self.events.emit("resumed")

    def cancel(self):
        """Drops all queued segments. Whatever is downloading right now is thrown away when it arrives."""
        with self._lock:
            if self.status not in (JobStatus.RUNNING, JobStatus.PAUSED):
                return

            self.status = JobStatus.CANCELED
            self._state_changed.notify_all()

        self.queue.clear()
        self.logger.info(f"[{self.run_id}] Canceled")
        self.events.emit("canceled")
