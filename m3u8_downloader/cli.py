import sys
import logging
import argparse
import threading

from typing import Dict, List, Optional

from .downloader import M3U8Downloader
from .modules.config import DownloadOptions
from .modules.errors import ConfigError
from .modules.progress_bars import Callback
from .modules.types import JobStatus
from .modules.utils import str_to_bool


def parse_headers(values: List[str]) -> Dict[str, str]:
    headers = {}
    for value in values or []:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise argparse.ArgumentTypeError(f"Header must look like 'Name: value', got: {value!r}")
        headers[name.strip()] = content.strip()
    return headers


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="m3u8-download", description="Download an HLS (m3u8) stream into one file")
    parser.add_argument("url", help="URL of the m3u8 playlist")
    parser.add_argument("output", help="Output file, its directory has to exist")
    parser.add_argument("--concurrency", type=int, default=5, help="Segments downloaded at the same time")
    parser.add_argument("--segments-dir", default=None, help="Directory for the downloaded segments")
    parser.add_argument("--convert", action="store_true", help="Remux the merged file with ffmpeg")
    parser.add_argument("--no-merge", action="store_true", help="Only download the segments")
    parser.add_argument("--ffmpeg", default=None, help="Path to the ffmpeg binary")
    parser.add_argument("--retries", type=int, default=3, help="Retries for every request")
    parser.add_argument("--clean", type=str_to_bool, default=True,
                        help="Remove segments when the download fails or is canceled (true/false)")
    parser.add_argument("--header", action="append", default=[], help="Extra request header, 'Name: value'")
    parser.add_argument("--start", type=int, default=None, help="First segment index (inclusive)")
    parser.add_argument("--end", type=int, default=None, help="Last segment index (exclusive)")
    parser.add_argument("--skip-existing", action="store_true", help="Don't download segments that already exist")
    parser.add_argument("--suffix", default=".ts", help="Suffix of the segment files")
    parser.add_argument("--proxy", default=None, help="Proxy URL")
    parser.add_argument("--quality", default="best", help="best, half, worst or a height like 720")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        options = DownloadOptions(
            concurrency=args.concurrency,
            merge_segments=not args.no_merge,
            convert_to_mp4=args.convert,
            segments_dir=args.segments_dir,
            ffmpeg_path=args.ffmpeg,
            retries=args.retries,
            clean=args.clean,
            headers=parse_headers(args.header),
            start_index=args.start,
            end_index=args.end,
            skip_exist_segments=args.skip_existing,
            suffix=args.suffix,
            proxy=args.proxy,
            quality=args.quality,
        )

    except (ConfigError, argparse.ArgumentTypeError) as e:
        parser.error(str(e))

    downloader = M3U8Downloader(args.url, args.output, options=options)
    if args.debug:
        downloader.enable_logging(level=logging.DEBUG)

    downloader.on("progress", Callback.on_progress)
    downloader.on("error", lambda message: print(f"\nError: {message}", file=sys.stderr))
    downloader.on("converted", lambda output: print(f"\nConverted: {output}"))

    # The job runs in its own thread so Ctrl+C can cancel it and still let the cleanup happen
    worker = threading.Thread(target=downloader.download, name="m3u8-download", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.5)

    except KeyboardInterrupt:
        downloader.cancel()
        worker.join()

    print()
    return 0 if downloader.status == JobStatus.COMPLETED else 1
