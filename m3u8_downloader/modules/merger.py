import os
import shutil
import logging

from typing import Callable, Iterable, Optional

from .errors import MergeGapError
from .store import SegmentStore


def merge_segments(
    store: SegmentStore,
    indices: Iterable[int],
    target_path: str,
    should_continue: Callable[[], bool],
    delete_source: bool = True,
    logger: logging.Logger = None,
) -> Optional[str]:
    """
    Concatenates the segments in ascending index order into target_path.

    Returns the target path, or None if should_continue turned False while merging (the partial output is removed then).
    Raises MergeGapError if a segment is missing, the partial output is removed as well.
    If delete_source is set, every segment gets deleted right after it was appended, so the disk never holds all
    segments twice.
    """
    logger = logger or logging.getLogger(__name__)
    ordered = sorted(indices)

    if not should_continue():
        return None

    merged = 0
    completed = False
    with open(target_path, "wb") as out_fp:
        try:
            for index in ordered:
                if not should_continue():
                    logger.info(f"Merge aborted after {merged}/{len(ordered)} segments")
                    return None

                segment_path = store.path_for(index)
                if not os.path.isfile(segment_path):
                    raise MergeGapError(f"Segment {index} is missing: {segment_path}", index=index)

                with open(segment_path, "rb") as in_fp:
                    shutil.copyfileobj(in_fp, out_fp)

                merged += 1
                if delete_source:
                    store.remove(segment_path)

            completed = True

        finally:
            if not completed:
                out_fp.close()
                store.remove(target_path)

    logger.debug(f"Merged {merged} segments into: {target_path}")
    return target_path
