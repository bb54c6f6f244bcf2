"""
Tests for the migration scheduler: queue control, admission and ticks.
"""
import logging

import pytest

from cloudpc_migrator.errors import (
    DuplicateJobError,
    InvalidConfigError,
    JobNotFoundError,
    JobStateError,
    SameGroupError,
)
from cloudpc_migrator.jobs import (
    JobObserver,
    JobStatus,
    MigrationRequest,
    ReorderDirection,
    Stage,
)


def _request(n: int) -> MigrationRequest:
    upn = "ada@contoso.com" if n == 1 else f"user{n}@contoso.com"
    return MigrationRequest(upn, "grp-source", "grp-target")


class TestEnqueue:
    """Test adding jobs."""

    def test_enqueue_assigns_increasing_order(self, scheduler, migration_request, observer):
        first = scheduler.enqueue(migration_request)
        second = scheduler.enqueue(_request(2))

        assert first.status == JobStatus.QUEUED
        assert (first.queue_order, second.queue_order) == (1, 2)
        assert [j.job_id for j in scheduler.queued()] == [first.job_id, second.job_id]
        assert observer.changes[0] == (first.job_id, "queued", "getting_user_info")

    def test_same_group_rejected(self, scheduler):
        with pytest.raises(SameGroupError):
            scheduler.enqueue(MigrationRequest("ada@contoso.com", "grp-source", "grp-source"))

        assert scheduler.jobs() == []

    def test_duplicate_rejected_while_unfinished(self, scheduler, migration_request, clock):
        first = scheduler.enqueue(migration_request)

        with pytest.raises(DuplicateJobError) as exc_info:
            scheduler.enqueue(MigrationRequest("ADA@contoso.com", "grp-source", "grp-target"))
        assert exc_info.value.existing_job_id == first.job_id

        first.status = JobStatus.FAILED
        first.end_time = clock()
        assert scheduler.enqueue(migration_request).job_id != first.job_id

    def test_non_queued_job_rejected(self, scheduler, make_job):
        with pytest.raises(JobStateError):
            scheduler.enqueue(make_job(Stage.GETTING_USER_INFO))

    def test_order_keeps_growing_after_removal(self, scheduler):
        scheduler.enqueue(_request(1))
        scheduler.enqueue(_request(2))
        third = scheduler.enqueue(_request(3))
        scheduler.remove(third.job_id)

        assert scheduler.enqueue(_request(4)).queue_order == 3


class TestRemove:
    """Remove succeeds for queued and finished jobs only."""

    def test_remove_queued(self, scheduler, migration_request):
        job = scheduler.enqueue(migration_request)

        assert scheduler.remove(job.job_id) is job
        assert scheduler.jobs() == []

    @pytest.mark.asyncio
    async def test_remove_active_fails(self, scheduler, migration_request):
        job = scheduler.enqueue(migration_request)
        scheduler.start()
        await scheduler.tick()

        with pytest.raises(JobStateError):
            scheduler.remove(job.job_id)
        assert scheduler.get(job.job_id) is job

    @pytest.mark.asyncio
    async def test_remove_monitoring_fails(self, make_scheduler, make_auto_gateway):
        scheduler = make_scheduler(gateway=make_auto_gateway(provision=False))
        job = scheduler.enqueue(_request(1))
        scheduler.start()
        for _ in range(5):
            await scheduler.tick()
        assert job.status == JobStatus.MONITORING

        with pytest.raises(JobStateError):
            scheduler.remove(job.job_id)

    @pytest.mark.asyncio
    async def test_remove_terminal(self, scheduler, gateway, migration_request):
        gateway.remove_resource("R1")
        job = scheduler.enqueue(migration_request)
        scheduler.start()
        await scheduler.tick()
        await scheduler.tick()
        assert job.status == JobStatus.FAILED

        scheduler.remove(job.job_id)

        assert scheduler.jobs() == []

    def test_remove_notifies_observers(self, scheduler, observer, migration_request):
        job = scheduler.enqueue(migration_request)

        scheduler.remove(job.job_id)

        assert observer.removed == [job.job_id]

    def test_remove_unknown(self, scheduler):
        with pytest.raises(JobNotFoundError):
            scheduler.remove("missing")

    @pytest.mark.asyncio
    async def test_clear_finished(self, scheduler, gateway, migration_request):
        gateway.remove_resource("R1")
        failed = scheduler.enqueue(migration_request)
        scheduler.start()
        await scheduler.tick()
        await scheduler.tick()
        scheduler.stop()
        queued = scheduler.enqueue(_request(2))

        assert scheduler.clear_finished() == [failed]
        assert scheduler.jobs() == [queued]


class TestReorder:
    """Reorder moves queued jobs only."""

    @pytest.fixture
    def three(self, scheduler):
        return [scheduler.enqueue(_request(n)) for n in (1, 2, 3)]

    def _ids(self, scheduler):
        return [j.job_id for j in scheduler.queued()]

    def test_up_and_down(self, scheduler, three):
        a, b, c = three

        assert scheduler.reorder(c.job_id, ReorderDirection.UP) is True
        assert self._ids(scheduler) == [a.job_id, c.job_id, b.job_id]

        assert scheduler.reorder(a.job_id, "down") is True
        assert self._ids(scheduler) == [c.job_id, a.job_id, b.job_id]

    def test_top_and_bottom(self, scheduler, three):
        a, b, c = three

        scheduler.reorder(c.job_id, ReorderDirection.TOP)
        assert self._ids(scheduler) == [c.job_id, a.job_id, b.job_id]

        scheduler.reorder(c.job_id, ReorderDirection.BOTTOM)
        assert self._ids(scheduler) == [a.job_id, b.job_id, c.job_id]

    def test_out_of_range_is_noop(self, scheduler, three):
        a, b, c = three

        assert scheduler.reorder(a.job_id, ReorderDirection.UP) is False
        assert scheduler.reorder(a.job_id, ReorderDirection.TOP) is False
        assert scheduler.reorder(c.job_id, ReorderDirection.DOWN) is False
        assert self._ids(scheduler) == [a.job_id, b.job_id, c.job_id]

    def test_invalid_direction(self, scheduler, three):
        with pytest.raises(ValueError):
            scheduler.reorder(three[0].job_id, "sideways")

    @pytest.mark.asyncio
    async def test_top_only_affects_future_admission(self, scheduler, three):
        a, b, c = three
        scheduler.set_concurrency(1)
        scheduler.start()
        await scheduler.tick()
        assert a.status == JobStatus.ACTIVE
        a_order = a.queue_order

        scheduler.reorder(c.job_id, ReorderDirection.TOP)

        assert a.status == JobStatus.ACTIVE
        assert a.queue_order == a_order
        with pytest.raises(JobStateError):
            scheduler.reorder(a.job_id, ReorderDirection.BOTTOM)

        scheduler.set_concurrency(2)
        report = await scheduler.tick()
        assert report.admitted == [c.job_id]
        assert b.status == JobStatus.QUEUED


class TestAdmission:
    """Concurrency cap, start and stop."""

    @pytest.mark.asyncio
    async def test_nothing_admitted_before_start(self, scheduler, migration_request):
        scheduler.enqueue(migration_request)

        report = await scheduler.tick()

        assert report.admitted == []
        assert scheduler.has_pending_work is False

    @pytest.mark.asyncio
    async def test_admission_sets_start_fields(self, scheduler, migration_request, clock):
        job = scheduler.enqueue(migration_request)
        scheduler.start()

        report = await scheduler.tick()

        assert report.admitted == [job.job_id]
        assert job.status == JobStatus.ACTIVE
        assert job.start_time == clock()
        # admitted jobs are processed in the same tick
        assert job.stage == Stage.GETTING_CURRENT_RESOURCE

    @pytest.mark.asyncio
    async def test_active_never_exceeds_cap(self, scheduler, add_user, clock):
        for n in range(2, 7):
            add_user(f"user{n}@contoso.com", f"u{n}", f"R{n}")
        for n in range(1, 7):
            scheduler.enqueue(_request(n))
        scheduler.set_concurrency(2)
        scheduler.start()

        for _ in range(10):
            await scheduler.tick()
            assert scheduler.active_count <= 2
            clock.advance(60)

        assert len(scheduler.queued()) == 4

    def test_set_concurrency_bounds(self, scheduler):
        with pytest.raises(InvalidConfigError):
            scheduler.set_concurrency(0)
        with pytest.raises(InvalidConfigError):
            scheduler.set_concurrency(scheduler.max_concurrency + 1)

        scheduler.set_concurrency(scheduler.max_concurrency)
        assert scheduler.concurrency == 10

    @pytest.mark.asyncio
    async def test_lowering_cap_does_not_preempt(self, scheduler, add_user):
        add_user("user2@contoso.com", "u2", "R2")
        add_user("user3@contoso.com", "u3", "R3")
        jobs = [scheduler.enqueue(_request(n)) for n in (1, 2, 3)]
        scheduler.start()
        await scheduler.tick()
        assert scheduler.active_count == 3

        scheduler.set_concurrency(1)
        await scheduler.tick()

        assert all(j.status == JobStatus.ACTIVE for j in jobs)

    @pytest.mark.asyncio
    async def test_monitoring_jobs_do_not_block_admission(self, make_scheduler, make_auto_gateway):
        scheduler = make_scheduler(gateway=make_auto_gateway(provision=False, users=3))
        jobs = [scheduler.enqueue(_request(n)) for n in (1, 2, 3)]
        scheduler.set_concurrency(1)
        scheduler.start()

        monitoring_when_third_admitted = None
        for _ in range(30):
            monitoring_before = scheduler.monitoring_count
            report = await scheduler.tick()
            assert scheduler.active_count <= 1
            if jobs[2].job_id in report.admitted:
                monitoring_when_third_admitted = monitoring_before
            if all(j.status == JobStatus.MONITORING for j in jobs):
                break

        assert monitoring_when_third_admitted == 2
        assert all(j.status == JobStatus.MONITORING for j in jobs)

    @pytest.mark.asyncio
    async def test_stop_halts_admission_but_not_in_flight(self, make_scheduler, make_auto_gateway):
        scheduler = make_scheduler(gateway=make_auto_gateway(users=2))
        first = scheduler.enqueue(_request(1))
        second = scheduler.enqueue(_request(2))
        scheduler.set_concurrency(1)
        scheduler.start()
        await scheduler.tick()

        scheduler.stop()
        ticks = await scheduler.run_until_idle(interval=0, max_ticks=20)

        assert first.status == JobStatus.SUCCESS
        assert second.status == JobStatus.QUEUED
        assert ticks == 5
        assert not scheduler.is_accepting


class TestTick:
    """Per-job isolation, reporting and the driver loop."""

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, scheduler, add_user, observer):
        add_user("user2@contoso.com", "u2", "R2")
        ghost = scheduler.enqueue(MigrationRequest("ghost@contoso.com", "grp-source", "grp-target"))
        good = scheduler.enqueue(_request(2))
        scheduler.start()

        report = await scheduler.tick()

        assert ghost.status == JobStatus.FAILED
        assert "ghost@contoso.com" in ghost.error_message
        assert ghost.end_time is not None
        assert good.stage == Stage.GETTING_CURRENT_RESOURCE
        assert report.processed == [ghost.job_id, good.job_id]
        assert report.completed == [ghost.job_id]
        assert observer.completed == [ghost.job_id]
        assert any(level == logging.ERROR and job_id == ghost.job_id for level, _, job_id in observer.logs)

    @pytest.mark.asyncio
    async def test_completion_reported_once(self, scheduler, gateway, migration_request, observer):
        gateway.remove_resource("R1")
        scheduler.enqueue(migration_request)
        scheduler.start()

        for _ in range(4):
            await scheduler.tick()

        assert len(observer.completed) == 1

    @pytest.mark.asyncio
    async def test_broken_observer_does_not_abort_tick(self, make_scheduler, observer, migration_request):
        class Broken(JobObserver):
            def on_job_changed(self, job):
                raise RuntimeError("observer bug")

        scheduler = make_scheduler(observers=[Broken(), observer])
        job = scheduler.enqueue(migration_request)
        scheduler.start()

        await scheduler.tick()

        assert job.stage == Stage.GETTING_CURRENT_RESOURCE
        assert observer.changes[-1][0] == job.job_id

    @pytest.mark.asyncio
    async def test_collection_locked_during_tick(self, make_scheduler, migration_request):
        errors = []

        class Meddler(JobObserver):
            armed = False

            def on_job_changed(self, job):
                if not self.armed:
                    return
                try:
                    scheduler.enqueue(_request(2))
                except JobStateError as exc:
                    errors.append(exc)

        meddler = Meddler()
        scheduler = make_scheduler(observers=[meddler])
        scheduler.enqueue(migration_request)
        meddler.armed = True
        scheduler.start()

        await scheduler.tick()

        assert errors
        assert len(scheduler.jobs()) == 1

    @pytest.mark.asyncio
    async def test_waiting_jobs_not_polled_before_interval(self, scheduler, gateway, migration_request, clock):
        job = scheduler.enqueue(migration_request)
        scheduler.start()
        for _ in range(4):
            await scheduler.tick()
        assert job.stage == Stage.WAITING_FOR_GRACE_PERIOD
        calls = gateway.count_calls("list_resources_for_user")

        report = await scheduler.tick()
        assert report.processed == []

        clock.advance(60)
        report = await scheduler.tick()
        assert report.processed == [job.job_id]
        assert gateway.count_calls("list_resources_for_user") == calls + 1

    @pytest.mark.asyncio
    async def test_run_until_idle(self, make_scheduler, make_auto_gateway, observer):
        scheduler = make_scheduler(gateway=make_auto_gateway())
        job = scheduler.enqueue(_request(1))
        scheduler.start()

        ticks = await scheduler.run_until_idle(interval=0)

        assert ticks == 6
        assert job.status == JobStatus.SUCCESS
        assert [r.id for r in job.new_resources] == ["u1-new"]
        assert observer.completed == [job.job_id]
        assert scheduler.has_pending_work is False

    @pytest.mark.asyncio
    async def test_run_until_idle_respects_max_ticks(self, scheduler, migration_request):
        scheduler.enqueue(migration_request)
        scheduler.start()

        assert await scheduler.run_until_idle(interval=0, max_ticks=2) == 2
