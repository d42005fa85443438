"""
Tests for the atomic slot and the periodic task.
"""

from pathlib import Path
import sys
import threading
import time

import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from gicp_relocalization.pipeline.periodic import PeriodicTask
from gicp_relocalization.pipeline.slots import AtomicSlot


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class TestAtomicSlot:
    def test_get_set(self):
        slot = AtomicSlot()
        assert slot.get() is None
        assert not slot.is_set

        slot.set("a")
        assert slot.get() == "a"
        assert slot.is_set

        slot.set(None)
        assert not slot.is_set

    def test_set_if_empty(self):
        slot = AtomicSlot()
        assert slot.set_if_empty(1)
        assert not slot.set_if_empty(2)
        assert slot.get() == 1

    def test_readers_never_see_torn_values(self):
        slot = AtomicSlot((0, 0))
        stop = threading.Event()
        torn = []

        def writer():
            i = 0
            while not stop.is_set():
                i += 1
                slot.set((i, i))

        def reader():
            while not stop.is_set():
                a, b = slot.get()
                if a != b:
                    torn.append((a, b))

        threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        time.sleep(0.2)
        stop.set()
        for t in threads:
            t.join()

        assert torn == []


class TestPeriodicTask:
    def test_runs_repeatedly_until_stopped(self):
        calls = []
        task = PeriodicTask("counter", 0.01, lambda: calls.append(time.monotonic()))
        task.start()
        assert task.running
        assert _wait_for(lambda: len(calls) >= 5)
        task.stop()

        assert not task.running
        count = len(calls)
        time.sleep(0.05)
        assert len(calls) == count

    def test_exception_does_not_stop_task(self, caplog):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("transient failure")

        task = PeriodicTask("flaky", 0.01, flaky)
        task.start()
        assert _wait_for(lambda: len(calls) >= 3)
        task.stop()

        assert "Periodic task 'flaky' raised" in caplog.text

    def test_runs_never_overlap_and_missed_ticks_are_skipped(self):
        active = []
        max_active = []
        lock = threading.Lock()

        def slow():
            with lock:
                active.append(1)
                max_active.append(len(active))
            time.sleep(0.05)
            with lock:
                active.pop()

        task = PeriodicTask("slow", 0.01, slow)
        task.start()
        assert _wait_for(lambda: task.runs >= 3)
        task.stop()

        assert max(max_active) == 1
        assert task.skipped_ticks > 0

    def test_double_start_raises(self):
        task = PeriodicTask("twice", 0.05, lambda: None)
        task.start()
        try:
            with pytest.raises(RuntimeError):
                task.start()
        finally:
            task.stop()

    def test_restart_after_stop(self):
        calls = []
        task = PeriodicTask("restart", 0.01, lambda: calls.append(1))
        task.start()
        assert _wait_for(lambda: len(calls) >= 1)
        task.stop()
        count = len(calls)
        task.start()
        assert _wait_for(lambda: len(calls) > count)
        task.stop()

    @pytest.mark.parametrize("period", [0.0, -1.0])
    def test_invalid_period_raises(self, period):
        with pytest.raises(ValueError):
            PeriodicTask("bad", period, lambda: None)
