"""
Tests for the lease-based job queue and run counters
"""
import threading
from datetime import timedelta

import pytest

from core import AnalysisStatus, JobStatus, RunStatus
from orchestrator import JobQueue, STOPPED_BY_USER
from utils.exceptions import NotFoundError, ValidationError


def _create_run(repository, program_factory, paths=("/lesson/a", "/lesson/b", "/lesson/c"), **kwargs):
    program, lessons = program_factory(paths=paths)
    run = repository.create_run(program_id=program.id, user_id="user-1", **kwargs)
    return run, lessons


def _assert_counters(run):
    assert run.queued + run.processed == run.total
    assert run.processed == run.succeeded + run.failed + run.skipped


class TestCreateRun:
    """Run creation"""

    def test_one_queued_job_per_lesson(self, repository, queue, program_factory):
        run, lessons = _create_run(repository, program_factory)

        assert run.status == RunStatus.QUEUED
        assert run.total == 3
        assert run.queued == 3
        assert run.processed == 0
        jobs = queue.list_jobs(run.id)
        assert [job.lesson_id for job in jobs] == [lesson.id for lesson in lessons]
        assert all(job.status == JobStatus.QUEUED and job.attempt_count == 0 for job in jobs)

    def test_configurable_run_needs_configuration(self, repository, program_factory):
        program, _ = program_factory()
        with pytest.raises(ValidationError):
            repository.create_run(program_id=program.id, user_id="user-1", metrics_mode="configurable")

    def test_unknown_program(self, repository):
        with pytest.raises(NotFoundError):
            repository.create_run(program_id="missing", user_id="user-1")


class TestPickJob:
    """Claiming"""

    def test_claims_oldest_first(self, repository, queue, clock, program_factory):
        run, lessons = _create_run(repository, program_factory)

        claimed = [queue.pick_job() for _ in range(3)]

        assert [job.lesson_id for job in claimed] == [lesson.id for lesson in lessons]
        for job in claimed:
            assert job.status == JobStatus.RUNNING
            assert job.lock_owner == "worker-a"
            assert job.lock_expires_at == clock.now + timedelta(seconds=90)
        assert queue.pick_job() is None

    def test_two_workers_never_share_a_job(self, db, repository, clock, program_factory):
        _create_run(repository, program_factory, paths=("/lesson/a", "/lesson/b"))
        first = JobQueue(db, worker_id="worker-a", clock=clock)
        second = JobQueue(db, worker_id="worker-b", clock=clock)

        a = first.pick_job()
        b = second.pick_job()

        assert a is not None and b is not None
        assert a.id != b.id
        assert first.pick_job() is None
        assert second.pick_job() is None

    def test_concurrent_claimants_get_distinct_jobs(self, db, repository, program_factory):
        paths = tuple(f"/lesson/{index}" for index in range(6))
        run, _ = _create_run(repository, program_factory, paths=paths)

        claimed = []
        lock = threading.Lock()

        def worker(worker_id):
            worker_queue = JobQueue(db, worker_id=worker_id)
            while True:
                job = worker_queue.pick_job()
                if job is None:
                    return
                with lock:
                    claimed.append((job.id, worker_id))

        threads = [threading.Thread(target=worker, args=(f"worker-{index}",)) for index in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        job_ids = [job_id for job_id, _ in claimed]
        assert len(job_ids) == 6
        assert len(set(job_ids)) == 6
        for job in queue_jobs(db, run.id):
            assert job.status == JobStatus.RUNNING

    def test_restricted_to_run(self, repository, queue, program_factory):
        first, _ = _create_run(repository, program_factory, paths=("/lesson/a",))
        second, _ = _create_run(repository, program_factory, paths=("/lesson/b",))

        job = queue.pick_job(run_id=second.id)

        assert job.run_id == second.id
        assert queue.pick_job(run_id=second.id) is None
        assert queue.pick_job(run_id=first.id).run_id == first.id

    def test_expired_lease_is_reclaimable(self, db, repository, queue, clock, program_factory):
        _create_run(repository, program_factory, paths=("/lesson/a",))
        job = queue.pick_job()
        other = JobQueue(db, worker_id="worker-b", clock=clock)

        assert other.pick_job() is None
        clock.advance(91)
        reclaimed = other.pick_job()

        assert reclaimed.id == job.id
        assert reclaimed.lock_owner == "worker-b"


def queue_jobs(db, run_id):
    return JobQueue(db, worker_id="reader").list_jobs(run_id)


class TestRetries:
    """Outcome recording and backoff"""

    def test_backoff_then_terminal_failure(self, repository, queue, clock, program_factory):
        run, _ = _create_run(repository, program_factory, paths=("/lesson/a",))

        for attempt, delay in enumerate((10, 30, 60), start=1):
            job = queue.pick_job()
            assert job is not None
            updated = queue.update_job_status(job.id, JobStatus.FAILED, "boom")
            assert updated.status == JobStatus.QUEUED
            assert updated.attempt_count == attempt
            assert updated.last_error == "boom"
            assert updated.lock_owner is None
            assert updated.next_eligible_at == clock.now + timedelta(seconds=delay)

            clock.advance(delay - 1)
            assert queue.pick_job() is None
            clock.advance(1)

        job = queue.pick_job()
        final = queue.update_job_status(job.id, JobStatus.FAILED, "boom")

        assert final.status == JobStatus.FAILED
        assert final.attempt_count == 3
        run = repository.get_run(run.id)
        assert run.status == RunStatus.FAILED
        assert run.failed == 1
        assert run.finished_at is not None
        _assert_counters(run)

    def test_non_retryable_failure_is_terminal(self, repository, queue, program_factory):
        run, _ = _create_run(repository, program_factory, paths=("/lesson/a", "/lesson/b"))
        job = queue.pick_job()

        updated = queue.update_job_status(job.id, JobStatus.FAILED, "Lesson not found", retryable=False)

        assert updated.status == JobStatus.FAILED
        assert updated.attempt_count == 0
        assert updated.last_error == "Lesson not found"

    def test_queued_is_not_an_outcome(self, repository, queue, program_factory):
        _create_run(repository, program_factory, paths=("/lesson/a",))
        job = queue.pick_job()
        with pytest.raises(ValidationError):
            queue.update_job_status(job.id, JobStatus.QUEUED)

    def test_unknown_job(self, queue):
        with pytest.raises(NotFoundError):
            queue.update_job_status("missing", JobStatus.SUCCEEDED)

    def test_job_removed_during_update(self, monkeypatch, repository, queue, program_factory):
        _create_run(repository, program_factory, paths=("/lesson/a",))
        job = queue.pick_job()
        monkeypatch.setattr(queue, "get_job", lambda job_id: None)

        with pytest.raises(NotFoundError):
            queue.update_job_status(job.id, JobStatus.SUCCEEDED)


class TestRunCounters:
    """Counter invariants and derived run status"""

    def test_counters_track_every_transition(self, repository, queue, program_factory):
        run, _ = _create_run(repository, program_factory)

        first = queue.pick_job()
        run = repository.get_run(run.id)
        _assert_counters(run)

        queue.update_job_status(first.id, JobStatus.SUCCEEDED)
        run = repository.get_run(run.id)
        assert run.status == RunStatus.RUNNING
        assert run.started_at is not None
        assert (run.queued, run.processed, run.succeeded) == (2, 1, 1)
        _assert_counters(run)

        second = queue.pick_job()
        queue.update_job_status(second.id, JobStatus.SKIPPED)
        third = queue.pick_job()
        queue.update_job_status(third.id, JobStatus.FAILED, "denied", retryable=False)

        run = repository.get_run(run.id)
        assert (run.total, run.queued, run.processed) == (3, 0, 3)
        assert (run.succeeded, run.skipped, run.failed) == (1, 1, 1)
        assert run.status == RunStatus.COMPLETED_WITH_ERRORS
        _assert_counters(run)

    def test_running_jobs_count_as_queued(self, repository, queue, program_factory):
        run, _ = _create_run(repository, program_factory, paths=("/lesson/a", "/lesson/b"))
        queue.pick_job()

        run = queue.update_run_counters(run.id)

        assert run.queued == 2
        assert run.processed == 0

    @pytest.mark.parametrize(
        "counts, expected",
        [
            ({"pending": 1, "succeeded": 0, "failed": 0, "skipped": 0}, RunStatus.RUNNING),
            ({"pending": 0, "succeeded": 2, "failed": 0, "skipped": 1}, RunStatus.COMPLETED),
            ({"pending": 0, "succeeded": 0, "failed": 0, "skipped": 2}, RunStatus.COMPLETED),
            ({"pending": 0, "succeeded": 1, "failed": 1, "skipped": 0}, RunStatus.COMPLETED_WITH_ERRORS),
            ({"pending": 0, "succeeded": 0, "failed": 2, "skipped": 0}, RunStatus.FAILED),
        ],
    )
    def test_derive_run_status(self, counts, expected):
        assert JobQueue.derive_run_status(**counts) == expected


class TestRunControl:
    """Pause, resume and stop"""

    def test_pause_keeps_status_through_counter_updates(self, repository, queue, program_factory):
        run, _ = _create_run(repository, program_factory, paths=("/lesson/a", "/lesson/b"))
        job = queue.pick_job()

        queue.set_run_status(run.id, RunStatus.PAUSED)
        queue.update_job_status(job.id, JobStatus.SUCCEEDED)

        assert repository.get_run(run.id).status == RunStatus.PAUSED
        resumed = queue.set_run_status(run.id, RunStatus.RUNNING)
        assert resumed.status == RunStatus.RUNNING

    def test_stop_fails_queued_jobs(self, repository, queue, program_factory):
        run, _ = _create_run(repository, program_factory)
        in_flight = queue.pick_job()

        stopped = queue.set_run_status(run.id, RunStatus.STOPPED)

        assert stopped.status == RunStatus.STOPPED
        assert stopped.failed == 2
        assert stopped.queued == 1
        _assert_counters(stopped)
        jobs = {job.id: job for job in queue.list_jobs(run.id)}
        assert jobs[in_flight.id].status == JobStatus.RUNNING
        others = [job for job_id, job in jobs.items() if job_id != in_flight.id]
        assert all(job.status == JobStatus.FAILED and job.last_error == STOPPED_BY_USER for job in others)

    def test_in_flight_failure_after_stop_is_terminal(self, repository, queue, program_factory):
        run, _ = _create_run(repository, program_factory)
        in_flight = queue.pick_job()
        queue.set_run_status(run.id, RunStatus.STOPPED)

        job = queue.update_job_status(in_flight.id, JobStatus.FAILED, "boom")

        assert job.status == JobStatus.FAILED
        assert job.last_error == STOPPED_BY_USER
        assert job.attempt_count == 0
        assert job.next_eligible_at is None
        stopped = repository.get_run(run.id)
        assert stopped.status == RunStatus.STOPPED
        assert (stopped.queued, stopped.failed) == (0, 3)
        _assert_counters(stopped)

    def test_in_flight_success_after_stop_is_kept(self, repository, queue, program_factory):
        run, _ = _create_run(repository, program_factory)
        in_flight = queue.pick_job()
        queue.set_run_status(run.id, RunStatus.STOPPED)

        job = queue.update_job_status(in_flight.id, JobStatus.SUCCEEDED)

        assert job.status == JobStatus.SUCCEEDED
        stopped = repository.get_run(run.id)
        assert (stopped.queued, stopped.succeeded, stopped.failed) == (0, 1, 2)

    def test_finished_run_cannot_change(self, repository, queue, program_factory):
        run, _ = _create_run(repository, program_factory, paths=("/lesson/a",))
        queue.set_run_status(run.id, RunStatus.STOPPED)
        with pytest.raises(ValidationError):
            queue.set_run_status(run.id, RunStatus.RUNNING)

    def test_only_control_statuses(self, repository, queue, program_factory):
        run, _ = _create_run(repository, program_factory, paths=("/lesson/a",))
        with pytest.raises(ValidationError):
            queue.set_run_status(run.id, RunStatus.COMPLETED)


class TestMaintenance:
    """Stale locks and the content hash gate"""

    def test_release_stale_locks(self, repository, queue, clock, program_factory):
        run, _ = _create_run(repository, program_factory, paths=("/lesson/a", "/lesson/b"))
        queue.pick_job()

        assert queue.release_stale_locks() == 0
        clock.advance(91)
        assert queue.release_stale_locks() == 1

        jobs = queue.list_jobs(run.id)
        assert all(job.status == JobStatus.QUEUED and job.lock_owner is None for job in jobs)

    def test_check_content_hash(self, repository, queue, program_factory):
        _, lessons = program_factory(paths=("/lesson/a",))
        lesson_id = lessons[0].id

        running = repository.create_analysis(content="text", content_hash="h1", model_used="fake-model", lesson_id=lesson_id)
        assert queue.check_content_hash(lesson_id, "h1") is False

        repository.finalize_analysis(running.id, status=AnalysisStatus.PARTIAL, results={})
        assert queue.check_content_hash(lesson_id, "h1") is True
        assert queue.check_content_hash(lesson_id, "h2") is False
        assert queue.check_content_hash(lesson_id, "h1", "config-1") is False

        configured = repository.create_analysis(
            content="text", content_hash="h1", model_used="fake-model", lesson_id=lesson_id, configuration_id="config-1"
        )
        repository.finalize_analysis(configured.id, status=AnalysisStatus.COMPLETED, results={})
        assert queue.check_content_hash(lesson_id, "h1", "config-1") is True

    def test_failed_analysis_does_not_gate(self, repository, queue, program_factory):
        _, lessons = program_factory(paths=("/lesson/a",))
        record = repository.create_analysis(content="text", content_hash="h1", model_used="fake-model", lesson_id=lessons[0].id)
        repository.finalize_analysis(record.id, status=AnalysisStatus.FAILED, results={})

        assert queue.check_content_hash(lessons[0].id, "h1") is False
