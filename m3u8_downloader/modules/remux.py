import logging

from typing import Callable, Optional
from ffmpeg_progress_yield import FfmpegProgress

from .errors import RemuxError

CallbackType = Callable[[int, int], None]


def build_command(ffmpeg_path: str, input_path: str, output_path: str) -> list:
    return [
        ffmpeg_path,
        "-y",  # Overwrite output files without asking
        "-i", input_path,
        "-c", "copy",  # Copy streams without re-encoding
        "-bsf:a", "aac_adtstoasc",
        output_path,
    ]


def remux(input_path: str, output_path: str, ffmpeg_path: str = "ffmpeg", callback: Optional[CallbackType] = None,
          logger: logging.Logger = None) -> str:
    """
    Re-containers input_path into output_path with ffmpeg. callback receives (percentage, 100).
    Any non-zero exit of ffmpeg is a failure, no matter what it printed.
    """
    logger = logger or logging.getLogger(__name__)
    command = build_command(ffmpeg_path, input_path, output_path)
    logger.debug(f"Running: {' '.join(command)}")

    ff = FfmpegProgress(command)
    try:
        for progress in ff.run_command_with_progress():
            if callback is not None:
                callback(int(round(progress)), 100)

    except FileNotFoundError as e:
        raise RemuxError(f"ffmpeg not found at: {ffmpeg_path}", output=str(e)) from e

    except (RuntimeError, OSError) as e:
        output = getattr(ff, "stderr", None) or str(e)
        logger.error(f"ffmpeg failed for: {input_path} -> {output}")
        raise RemuxError(f"Failed to remux: {input_path}", output=output) from e

    logger.info(f"Remuxed: {input_path} -> {output_path}")
    return output_path
