import threading

import pytest

from solver.tasks import TaskQueue


def test_tasks_run_and_report_results():
    with TaskQueue(2) as q:
        tasks = [q.submit(pow, n, 2) for n in range(5)]
        assert q.wait_all(timeout=10)
        assert [t.get() for t in tasks] == [0, 1, 4, 9, 16]
        stats = q.statistics()
    assert stats["done"] == 5
    assert stats["total"] == 5
    assert stats["workers"] == 2


def test_failures_are_kept_on_the_task():
    def boom():
        raise ValueError("nope")

    with TaskQueue() as q:
        task = q.submit(boom)
        assert task.wait(10)
        assert task.state == "failed"
        with pytest.raises(ValueError, match="nope"):
            task.get()


def test_cancel_only_touches_queued_tasks():
    gate = threading.Event()
    with TaskQueue(1) as q:
        blocker = q.submit(gate.wait, 10)
        waiting = q.submit(lambda: "ran")
        assert q.cancel(waiting) is True
        assert waiting.done()
        gate.set()
        assert blocker.get(10) is True
        assert q.cancel(blocker) is False
        assert q.wait_all(10)
        assert waiting.state == "cancelled"
        assert waiting.result is None


def test_get_times_out_while_running():
    gate = threading.Event()
    with TaskQueue(1) as q:
        task = q.submit(gate.wait, 10)
        with pytest.raises(TimeoutError):
            task.get(timeout=0.05)
        gate.set()
        assert task.get(10) is True


def test_closed_queue_rejects_work():
    q = TaskQueue(1)
    q.close()
    with pytest.raises(RuntimeError):
        q.submit(print)
    q.close()
