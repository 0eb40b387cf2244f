import re
import os
import ssl
import time
import m3u8
import httpx
import random
import certifi
import logging
import threading

from email.utils import parsedate_to_datetime
from urllib.parse import urljoin
from typing import Any, Dict, List, Optional, Union

from .modules.errors import ManifestError, TransportError
from .modules.config import config as default_config, RuntimeConfig
from .modules.types import SegmentRef
from .modules.utils import is_url

UA_DESKTOP_FIREFOX = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:128.0) Gecko/20100101 Firefox/128.0"
loggers = {}
HEIGHT_FROM_URI = re.compile(r'(?<!\d)(\d{3,4})[pP](?!\d)')  # e.g., 1080p, 720P
MAX_RETRY_AFTER = 30.0
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def setup_logger(name, log_file=None, level=logging.ERROR):
    """Creates or updates a logger for a specific component."""
    if name in loggers:
        logger = loggers[name]
        logger.setLevel(level)

        file_handler_exists = any(isinstance(h, logging.FileHandler) for h in logger.handlers)
        if log_file and not file_handler_exists:
            fh = logging.FileHandler(log_file, mode='a')
            fh.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(fh)

        return logger

    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(ch)

    if log_file:
        fh = logging.FileHandler(log_file, mode='a')
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(fh)

    loggers[name] = logger
    return logger


def _height_from_variant(variant) -> Optional[int]:
    """Extract height from a variant:
    1) stream_info.resolution (w, h)
    2) URI pattern like .../720p/...
    """
    if getattr(variant, "stream_info", None) and variant.stream_info.resolution:
        _, h = variant.stream_info.resolution  # (w, h)
        return int(h)

    if variant.uri:
        m = HEIGHT_FROM_URI.search(variant.uri)
        if m:
            return int(m.group(1))

    return None


def _is_video_playlist(variant) -> bool:
    """Filter out I-frames/audio-only playlists."""
    if getattr(variant, "is_iframe", False):
        return False

    codecs = getattr(variant.stream_info, "codecs", None) if getattr(variant, "stream_info", None) else None
    if codecs:
        # video: avc1, hvc1, hev1, vp9, av01, dvh
        if not any(v in codecs.lower() for v in ("avc1", "hvc1", "hev1", "av01", "vp9", "dvh")):
            return False

    return True


def _collect_variants(master: m3u8.M3U8) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    for v in master.playlists:
        if not _is_video_playlist(v):
            continue

        bw = getattr(v.stream_info, "bandwidth", 0) if getattr(v, "stream_info", None) else 0
        items.append({
            "uri": v.uri,
            "height": _height_from_variant(v),  # may be None
            "bandwidth": int(bw or 0),
        })
    return items


def _normalize_quality(quality: Union[str, int]) -> Union[str, int]:
    """Convert '1080p'->1080, '720'->720, keep labels as-is."""
    if isinstance(quality, int):
        return quality
    q = str(quality).strip().lower()
    if q in {"best", "worst", "half"}:
        return q
    m = re.search(r'(\d{3,4})', q)
    if m:
        return int(m.group(1))
    raise ValueError(f"Invalid quality value: {quality!r}")


def _pick_variant(variants: List[Dict[str, Any]], quality: Union[str, int]) -> Dict[str, Any]:
    """
    best / half / worst rank by (height, bandwidth). A numeric height picks the highest height <= target,
    else the closest one (ties -> higher).
    """
    q = _normalize_quality(quality)
    if isinstance(q, str):
        ordered = sorted(variants, key=lambda v: (v["height"] or 0, v["bandwidth"]))
        if q == "worst":
            return ordered[0]
        if q == "half":
            return ordered[len(ordered) // 2]
        return ordered[-1]

    with_height = [v for v in variants if v["height"] is not None]
    if not with_height:
        return sorted(variants, key=lambda v: v["bandwidth"])[-1]

    below_eq = [v for v in with_height if v["height"] <= q]
    if below_eq:
        return sorted(below_eq, key=lambda v: (v["height"], v["bandwidth"]))[-1]

    return sorted(with_height, key=lambda v: (abs(v["height"] - q), -v["height"], -v["bandwidth"]))[0]


class BaseCore:
    """
    The network side of the downloader: an httpx session with retries, and resolving m3u8 playlists into segments.
    """
    def __init__(self, config: RuntimeConfig = default_config, retries: Optional[int] = None,
                 proxy: Optional[str] = None, transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self.last_request_time = time.time()
        self.total_requests = 0
        self.session: Optional[httpx.Client] = None
        self._session_lock = threading.Lock()
        # shared by the worker threads of a job: request_delay spaces out all of their requests
        self._request_lock = threading.Lock()
        self.transport = transport
        self.proxy = proxy or self.config.proxy
        # retries are the attempts after the first one
        self.max_attempts = retries + 1 if retries is not None else max(1, int(self.config.max_retries))
        self.logger = setup_logger("M3U8 - [BaseCore]", level=logging.ERROR)
        self.default_headers = {
            "User-Agent": UA_DESKTOP_FIREFOX,
            "Accept-Language": self.config.locale,
        }

    def enable_logging(self, log_file=None, level=logging.DEBUG):
        """Enables logging dynamically for this module."""
        self.logger = setup_logger(name="M3U8 - [BaseCore]", log_file=log_file, level=level)

    def initialize_session(self):
        ctx = ssl.create_default_context(cafile=certifi.where())
        if not self.config.verify_ssl:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE

        kwargs = {}
        if self.transport is not None:
            kwargs["transport"] = self.transport

        else:
            kwargs["proxy"] = self.proxy
            kwargs["http2"] = self.config.use_http2

        self.session = httpx.Client(
            timeout=self.config.timeout,
            verify=ctx,
            follow_redirects=True,
            headers=self.default_headers,
            **kwargs,
        )

    def close(self):
        if self.session is not None:
            self.session.close()
            self.session = None

    def enforce_delay(self):
        """Enforces the specified delay in config.request_delay (only if > 0)."""
        delay = self.config.request_delay
        with self._request_lock:
            if delay and delay > 0:
                time_since_last_request = time.time() - self.last_request_time
                if time_since_last_request < delay:
                    sleep_time = delay - time_since_last_request
                    self.logger.debug(f"Enforcing delay of {sleep_time:.2f} seconds.")
                    time.sleep(sleep_time)
            self.last_request_time = time.time()

    @staticmethod
    def _parse_retry_after(response: httpx.Response) -> Optional[float]:
        """Parse Retry-After (seconds or http-date) into seconds; None if not present/invalid."""
        v = response.headers.get("Retry-After")
        if not v:
            return None
        try:
            return float(v)
        except ValueError:
            try:
                dt = parsedate_to_datetime(v)
                delta = (dt - dt.now(dt.tzinfo)).total_seconds()
                return max(0.0, delta)
            except (TypeError, ValueError):
                return None

    def _read_body(self, response: httpx.Response) -> bytes:
        # bandwidth-limited read (optional)
        if self.config.max_bandwidth_mb is None or self.config.max_bandwidth_mb < 0.2:
            return response.read()

        raw_content = bytearray()
        chunk_size = 64 * 1024  # 64 KB
        speed_limit = self.config.max_bandwidth_mb * 1024 * 1024
        min_time_per_chunk = chunk_size / speed_limit
        start_time = time.time()
        for chunk in response.iter_bytes(chunk_size=chunk_size):
            raw_content.extend(chunk)
            sleep_time = min_time_per_chunk - (time.time() - start_time)
            if sleep_time > 0:
                time.sleep(sleep_time)
            start_time = time.time()
        return bytes(raw_content)

    def fetch(self, url: str, headers: Optional[Dict[str, str]] = None, get_bytes: bool = False,
              timeout: Optional[float] = None) -> Union[bytes, str]:
        """
        GETs url with retries. Transient failures (5xx, 429, connection errors, timeouts) are retried with a capped
        exponential backoff, every other status fails immediately.

        Returns bytes if get_bytes=True, otherwise the decoded text.
        Raises TransportError once the attempts are used up.
        """
        if self.session is None:
            with self._session_lock:
                if self.session is None:
                    self.initialize_session()

        req_timeout = timeout or self.config.timeout
        last_status: Optional[int] = None
        last_error: Optional[Exception] = None
        retry_after: Optional[float] = None

        for attempt in range(self.max_attempts):
            if attempt >= 1:
                if retry_after is not None:
                    time.sleep(min(retry_after, MAX_RETRY_AFTER))
                else:
                    # capped exponential backoff with jitter
                    base = min(5.0, 0.5 * (2 ** attempt))
                    time.sleep(base + random.random() * 0.25)
                retry_after = None

            self.enforce_delay()
            try:
                with self.session.stream("GET", url, headers=headers, timeout=req_timeout) as response:
                    with self._request_lock:
                        self.total_requests += 1
                    status = response.status_code
                    last_status = status

                    if 200 <= status < 300:
                        raw_content = self._read_body(response)
                        self.logger.debug(f"Attempt {attempt}: Successfully fetched URL: {url}")
                        if get_bytes:
                            return raw_content

                        enc = response.encoding or "utf-8"
                        try:
                            return raw_content.decode(enc, errors="strict")
                        except (UnicodeDecodeError, LookupError):
                            self.logger.warning(f"Content could not be decoded as {enc} ({url}), decoding in 'latin1' instead!")
                            return raw_content.decode("latin1", errors="replace")

                    if status == 429:
                        retry_after = self._parse_retry_after(response)
                        self.logger.warning(f"Rate limited (429) on {url}. Retrying ({attempt+1}/{self.max_attempts})...")
                        continue

                    if 500 <= status < 600:
                        self.logger.warning(f"Server error {status} on {url}. Retrying ({attempt+1}/{self.max_attempts})...")
                        continue

                    self.logger.error(f"HTTP {status} for {url}, not retrying.")
                    raise TransportError(f"HTTP {status} for URL: {url}", url=url, status_code=status)

            except httpx.ProxyError as e:
                self.logger.error(f"Proxy Error for {url}: {e}")
                raise TransportError(f"Proxy error when requesting: {url}: {e}", url=url) from e

            except httpx.TimeoutException as e:
                last_error = e
                self.logger.error(f"Attempt {attempt}: Timeout for URL {url}: {e}")

            except httpx.RequestError as e:
                last_error = e
                self.logger.error(f"Attempt {attempt}: Request error for URL {url}: {e}")
                if "CERTIFICATE_VERIFY_FAILED" in str(e):
                    raise TransportError(f"Invalid SSL certificate for: {url}, set 'verify_ssl = False' in config", url=url) from e

        self.logger.error(f"Failed to fetch URL {url} after {self.max_attempts} attempts.")
        reason = f"HTTP {last_status}" if last_status is not None else str(last_error)
        raise TransportError(f"Failed to fetch: {url} after {self.max_attempts} attempts ({reason})",
                             url=url, status_code=last_status) from last_error

    def load_playlist(self, locator: str, headers: Optional[Dict[str, str]] = None,
                      base_url: Optional[str] = None) -> m3u8.M3U8:
        """
        Loads a playlist from a URL, a local file or inline #EXTM3U content.
        The returned playlist has its base_uri set to the URL the segment URIs are relative to.
        """
        if locator.lstrip().startswith("#EXTM3U"):
            content, base = locator, base_url or ""
            self.logger.debug("Resolved inline m3u8 content.")

        elif is_url(locator):
            try:
                content = self.fetch(locator, headers=headers)

            except TransportError as e:
                raise ManifestError(f"Failed to download m3u8 file: {locator} -> {e.message}") from e

            base = base_url or locator

        elif os.path.isfile(locator):
            with open(locator, "r", encoding="utf-8", errors="replace") as file:
                content = file.read()
            base = base_url or ""

        else:
            raise ManifestError(f"Not a URL, a file or m3u8 content: {locator!r}")

        if not content.lstrip().startswith("#EXTM3U"):
            raise ManifestError(f"Not an m3u8 playlist: {locator}")

        try:
            playlist = m3u8.loads(content)

        except Exception as e:
            raise ManifestError(f"Couldn't parse m3u8 playlist: {locator} -> {e}") from e

        playlist.base_uri = base
        return playlist

    def get_m3u8_by_quality(self, master: m3u8.M3U8, quality: Union[str, int]) -> str:
        """Return the media-playlist URL for the requested quality."""
        variants = _collect_variants(master)
        if not variants:
            raise ManifestError("No usable video variants found in master playlist.")

        try:
            chosen = _pick_variant(variants, quality)

        except ValueError as e:
            raise ManifestError(str(e)) from e

        return urljoin(master.base_uri, chosen["uri"])

    def list_available_qualities(self, locator: str, headers: Optional[Dict[str, str]] = None) -> List[int]:
        """Sorted unique heights of a master playlist (e.g., [240, 360, 480, 720, 1080])."""
        master = self.load_playlist(locator, headers=headers)
        if not master.is_variant:
            return []

        return sorted({h for h in (_height_from_variant(v) for v in master.playlists) if h is not None})

    def get_segments(self, locator: str, headers: Optional[Dict[str, str]] = None,
                     quality: Union[str, int] = "best", base_url: Optional[str] = None) -> List[SegmentRef]:
        """
        Resolves a playlist into the ordered, absolute segment URLs. A master playlist is resolved to the variant
        matching quality first. An init segment (EXT-X-MAP) becomes segment 0.
        """
        parsed = self.load_playlist(locator, headers=headers, base_url=base_url)

        if parsed.is_variant:
            media_url = self.get_m3u8_by_quality(parsed, quality)
            self.logger.info(f"Resolved master playlist to: {media_url}")
            parsed = self.load_playlist(media_url, headers=headers)

        base_uri = parsed.base_uri
        urls: List[str] = []

        # Older m3u8 lib: .segment_map; newer: .init_section
        init_uri = None
        segmap = getattr(parsed, "segment_map", None)
        if segmap:
            init_uri = getattr(segmap[0], "uri", None)
        if init_uri is None:
            init_section = getattr(parsed, "init_section", None)
            init_uri = getattr(init_section, "uri", None)

        if init_uri:
            urls.append(urljoin(base_uri, init_uri))
            self.logger.debug(f"Found init segment: {urls[0]}")

        for segment in parsed.segments:
            if segment.key is not None and (segment.key.method or "NONE").upper() != "NONE":
                self.logger.warning(f"Segment {segment.uri} is encrypted ({segment.key.method}), it will be stored as-is.")
            urls.append(urljoin(base_uri, segment.uri))

        if not urls:
            raise ManifestError(f"No segments found for this playlist: {locator[:200]}")

        for url in urls:
            if not is_url(url):
                raise ManifestError(f"Segment URI can't be resolved to a URL: {url} (pass base_url for local playlists)")

        self.logger.debug(f"Fetched {len(urls)} segments from m3u8 (including init if present)")
        return [SegmentRef(index, url) for index, url in enumerate(urls)]
