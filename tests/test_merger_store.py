from __future__ import annotations

import os

import pytest

from m3u8_downloader.modules.cleanup import CleanupManager
from m3u8_downloader.modules.errors import ConfigError, MergeGapError
from m3u8_downloader.modules.merger import merge_segments
from m3u8_downloader.modules.store import SegmentStore


@pytest.fixture
def store(tmp_path):
    store = SegmentStore(str(tmp_path / "segments"))
    store.ensure()
    return store


def fill(store, count):
    data = [f"segment-{i};".encode() * (i + 1) for i in range(count)]
    for index, body in enumerate(data):
        store.write(index, body)
    return data


def test_paths_are_zero_padded(store):
    assert os.path.basename(store.path_for(7)) == "segment00007.ts"
    assert os.path.basename(store.path_for(123456)) == "segment123456.ts"
    assert os.path.basename(store.merged_path) == "merged.ts"


def test_suffix(tmp_path):
    store = SegmentStore(str(tmp_path), suffix=".m4s")
    assert store.path_for(0).endswith("segment00000.m4s")
    assert store.merged_path.endswith("merged.m4s")


def test_write_leaves_no_partial_file(store):
    path = store.write(3, b"abc")
    assert os.listdir(store.directory) == ["segment00003.ts"]
    with open(path, "rb") as file:
        assert file.read() == b"abc"
    assert store.exists(3)
    assert not store.exists(4)


def test_ensure_fails_on_a_file(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"")
    with pytest.raises(ConfigError):
        SegmentStore(str(blocker / "segments")).ensure()


def test_merge_is_ordered_by_index(store, tmp_path):
    data = fill(store, 4)
    target = str(tmp_path / "out.ts")

    assert merge_segments(store, [3, 1, 0, 2], target, should_continue=lambda: True) == target

    with open(target, "rb") as file:
        assert file.read() == b"".join(data)
    assert os.listdir(store.directory) == []


def test_merge_can_keep_sources(store, tmp_path):
    fill(store, 2)
    merge_segments(store, [0, 1], str(tmp_path / "out.ts"), should_continue=lambda: True, delete_source=False)
    assert store.exists(0) and store.exists(1)


def test_merge_gap(store, tmp_path):
    fill(store, 3)
    os.remove(store.path_for(1))
    target = tmp_path / "out.ts"

    with pytest.raises(MergeGapError) as excinfo:
        merge_segments(store, [0, 1, 2], str(target), should_continue=lambda: True)

    assert excinfo.value.index == 1
    assert not target.exists()


def test_merge_abort_removes_partial_output(store, tmp_path):
    fill(store, 3)
    target = tmp_path / "out.ts"
    answers = iter([True, True, False])

    assert merge_segments(store, [0, 1, 2], str(target), should_continue=lambda: next(answers)) is None
    assert not target.exists()


def test_cleanup_removes_recorded_files_and_intermediate(store):
    fill(store, 2)
    with open(store.merged_path, "wb") as file:
        file.write(b"merged")

    removed = CleanupManager(store).run([store.path_for(0), store.path_for(1), store.path_for(9)],
                                        remove_intermediate=True)

    assert removed == 3
    assert os.listdir(store.directory) == []


def test_cleanup_disabled(store):
    fill(store, 1)
    assert CleanupManager(store, enabled=False).run([store.path_for(0)], remove_intermediate=True) == 0
    assert store.exists(0)


def test_cleanup_never_raises(store, monkeypatch):
    fill(store, 1)

    def broken_remove(path):
        raise PermissionError("read-only file system")

    monkeypatch.setattr(store, "remove", broken_remove)
    assert CleanupManager(store).run([store.path_for(0)]) == 0


def test_failed_write_leaves_no_partial_file(store, monkeypatch):
    def disk_full(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(os, "replace", disk_full)

    with pytest.raises(OSError):
        store.write(0, b"abc")

    assert os.listdir(store.directory) == []
