"""
Tests for background task runners.
"""

import threading

from compintel.services.background import BackgroundTaskRunner, InlineTaskRunner, TaskStatus


def boom():
    raise RuntimeError("aggregate failed")


class TestInlineTaskRunner:
    def test_runs_immediately(self):
        runner = InlineTaskRunner()

        task = runner.submit("add", lambda a, b: a + b, 2, b=3)

        assert task.status == TaskStatus.SUCCEEDED
        assert task.result == 5
        assert task.done
        assert task.finished_at is not None

    def test_failure_is_recorded(self):
        runner = InlineTaskRunner()

        task = runner.submit("boom", boom)

        assert task.status == TaskStatus.FAILED
        assert isinstance(task.error, RuntimeError)
        assert runner.wait() == [task]


class TestBackgroundTaskRunner:
    def test_wait_returns_finished_tasks(self):
        runner = BackgroundTaskRunner(max_workers=2)
        try:
            ok = runner.submit("ok", lambda: "done")
            bad = runner.submit("bad", boom)

            tasks = runner.wait(timeout=5)

            assert tasks == [ok, bad]
            assert ok.status == TaskStatus.SUCCEEDED
            assert ok.result == "done"
            assert bad.status == TaskStatus.FAILED
            assert "aggregate failed" in str(bad.error)
            assert runner.pending() == []
        finally:
            runner.shutdown()

    def test_pending_until_released(self):
        runner = BackgroundTaskRunner(max_workers=1)
        release = threading.Event()
        try:
            task = runner.submit("blocked", release.wait, 5)

            assert runner.pending() == [task]

            release.set()
            runner.wait(timeout=5)

            assert task.status == TaskStatus.SUCCEEDED
            assert task.result is True
        finally:
            release.set()
            runner.shutdown()


class TestTaskHistory:
    def test_wait_forgets_finished_tasks(self):
        runner = BackgroundTaskRunner(max_workers=2)
        try:
            for i in range(50):
                runner.submit(f"post-process:{i}", lambda: {"payload": "x" * 100})
                assert len(runner.wait(timeout=5)) == 1

            assert len(runner.tasks) == 0
        finally:
            runner.shutdown()

    def test_history_is_bounded_without_wait(self):
        runner = BackgroundTaskRunner(max_workers=2, max_history=10)
        try:
            for i in range(50):
                runner.submit(f"post-process:{i}", lambda: None)

            assert len(runner.tasks) <= 10
            runner.wait(timeout=5)
        finally:
            runner.shutdown()

    def test_inline_history_is_bounded(self):
        runner = InlineTaskRunner(max_history=5)
        for i in range(20):
            runner.submit(f"post-process:{i}", lambda: None)

        assert [t.name for t in runner.wait()] == [f"post-process:{i}" for i in range(15, 20)]

    def test_timestamps_are_timezone_aware(self):
        task = InlineTaskRunner().submit("ok", lambda: None)

        assert task.submitted_at.tzinfo is not None
        assert task.finished_at.tzinfo is not None
        assert task.finished_at >= task.submitted_at
