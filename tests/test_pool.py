from __future__ import annotations

import threading
import time

import pytest

from m3u8_downloader.modules.pool import FetchWorkerPool


def test_concurrency_limit_is_respected():
    pool = FetchWorkerPool(3)
    lock = threading.Lock()
    state = {"running": 0, "peak": 0, "done": 0}

    def task():
        with lock:
            state["running"] += 1
            state["peak"] = max(state["peak"], state["running"])
        time.sleep(0.02)
        with lock:
            state["running"] -= 1
            state["done"] += 1

    pool.submit_all(task for _ in range(12))

    assert state["done"] == 12
    assert state["peak"] <= 3


def test_first_error_drops_the_queue_and_is_raised():
    pool = FetchWorkerPool(1)
    ran = []

    def ok(index):
        return lambda: ran.append(index)

    def boom():
        raise ValueError("segment failed")

    with pytest.raises(ValueError, match="segment failed"):
        pool.submit_all([ok(0), boom, ok(2), ok(3)])

    assert ran == [0]
    assert pool.size == 0


def test_deferred_task_goes_back_into_the_queue():
    pool = FetchWorkerPool(1)
    attempts = []

    def flaky():
        attempts.append(True)
        return len(attempts) >= 3

    pool.submit_all([flaky])
    assert len(attempts) == 3


def test_pause_holds_queued_tasks_until_resume():
    pool = FetchWorkerPool(1)
    started = threading.Event()
    release = threading.Event()
    ran = []

    def first():
        started.set()
        release.wait(5)
        ran.append(0)

    thread = threading.Thread(target=pool.submit_all, args=([first, lambda: ran.append(1)],))
    thread.start()
    assert started.wait(5)
    pool.pause()
    release.set()
    time.sleep(0.1)

    assert ran == [0]
    assert pool.size == 1
    assert thread.is_alive()

    pool.resume()
    thread.join(5)
    assert ran == [0, 1]


def test_clear_while_paused_drains_the_pool():
    pool = FetchWorkerPool(2)
    pool.pause()
    ran = []

    thread = threading.Thread(target=pool.submit_all, args=([lambda: ran.append(i) for i in range(4)],))
    thread.start()
    deadline = time.monotonic() + 5
    while pool.size < 4 and time.monotonic() < deadline:
        time.sleep(0.01)
    assert pool.clear() == 4
    thread.join(5)

    assert not thread.is_alive()
    assert ran == []


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        FetchWorkerPool(0)
