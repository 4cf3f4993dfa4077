"""
Tests for the job lifecycle tracker.
"""

import threading

from exportworker.tracker import JobLifecycleTracker


class TestJobLifecycleTracker:
    def test_register_and_lookup(self):
        """A registered execution is found by job id."""
        tracker = JobLifecycleTracker()
        tracker.register_execution("J1", 11)

        assert tracker.lookup_execution("J1") == 11
        assert tracker.lookup_execution("J2") is None
        assert tracker.job_for_execution(11) == "J1"

    def test_last_writer_wins(self):
        """A second registration replaces the first."""
        tracker = JobLifecycleTracker()
        tracker.register_execution("J1", 11)
        tracker.register_execution("J1", 12)

        assert tracker.lookup_execution("J1") == 12
        assert tracker.job_for_execution(11) is None

    def test_forget(self):
        """Forgetting returns the execution id once and clears the mapping."""
        tracker = JobLifecycleTracker()
        tracker.register_execution("J1", 11)

        assert tracker.forget("J1") == 11
        assert tracker.lookup_execution("J1") is None
        assert tracker.forget("J1") is None

    def test_forget_only_matching_execution(self):
        """A finished run must not drop the mapping of a newer run of the same job."""
        tracker = JobLifecycleTracker()
        tracker.register_execution("J1", 11)
        tracker.register_execution("J1", 12)

        assert tracker.forget("J1", 11) is None
        assert tracker.lookup_execution("J1") == 12
        assert tracker.forget("J1", 12) == 12

    def test_independent_job_ids(self):
        """Job ids do not affect each other."""
        tracker = JobLifecycleTracker()

        def register(offset):
            for i in range(200):
                tracker.register_execution(f"J{offset + i}", offset + i)

        threads = [threading.Thread(target=register, args=(n * 1000,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert tracker.lookup_execution("J3199") == 3199
        assert tracker.lookup_execution("J0") == 0
