"""
Tests for the poll clock.
"""
import pytest

from cloudpc_migrator.config import PollIntervals, StageTimeouts
from cloudpc_migrator.jobs import JobStatus, PollClock, Stage

T0 = 1_700_000_000.0


@pytest.fixture
def poll_clock() -> PollClock:
    return PollClock(PollIntervals(), StageTimeouts())


class TestIntervals:
    """Test per-stage intervals and timeouts."""

    def test_intervals(self, poll_clock):
        assert poll_clock.interval_for(Stage.REMOVING_FROM_SOURCE) == 0
        assert poll_clock.interval_for(Stage.WAITING_FOR_GRACE_PERIOD) == 60
        assert poll_clock.interval_for(Stage.WAITING_FOR_DEPROVISION) == 60
        assert poll_clock.interval_for(Stage.WAITING_FOR_PROVISIONING) == 180

    def test_timeouts(self, poll_clock):
        assert poll_clock.timeout_for(Stage.GETTING_USER_INFO) == 600
        assert poll_clock.timeout_for(Stage.WAITING_FOR_GRACE_PERIOD) == 900
        assert poll_clock.timeout_for(Stage.ENDING_GRACE_PERIOD) == 1800
        assert poll_clock.timeout_for(Stage.WAITING_FOR_DEPROVISION) == 3600
        assert poll_clock.timeout_for(Stage.WAITING_FOR_PROVISIONING) == 5400
        assert poll_clock.timeout_for(Stage.COMPLETE) is None


class TestDue:
    """Test due decisions."""

    def test_queued_and_terminal_never_due(self, poll_clock, make_job):
        queued = make_job(Stage.GETTING_USER_INFO, status=JobStatus.QUEUED, start_time=None)

        assert not poll_clock.is_due(queued, T0)

    def test_immediate_always_due(self, poll_clock, make_job):
        job = make_job(Stage.REMOVING_FROM_SOURCE, last_poll_time=T0)

        assert poll_clock.is_due(job, T0)

    def test_first_poll_of_stage_is_due(self, poll_clock, make_job):
        job = make_job(Stage.WAITING_FOR_GRACE_PERIOD)

        assert poll_clock.is_due(job, T0)

    def test_waiting_stage_interval(self, poll_clock, make_job):
        job = make_job(Stage.WAITING_FOR_GRACE_PERIOD, last_poll_time=T0)

        assert not poll_clock.is_due(job, T0 + 59)
        assert poll_clock.is_due(job, T0 + 60)

    def test_provisioning_interval(self, poll_clock, make_job):
        job = make_job(Stage.WAITING_FOR_PROVISIONING, last_poll_time=T0)

        assert not poll_clock.is_due(job, T0 + 120)
        assert poll_clock.is_due(job, T0 + 180)

    def test_throttled_job_not_due_before_retry_time(self, poll_clock, make_job):
        job = make_job(Stage.GETTING_CURRENT_RESOURCE, retry_not_before=T0 + 45)

        assert not poll_clock.is_due(job, T0 + 44)
        assert poll_clock.is_due(job, T0 + 45)


class TestTimeout:
    """Test stage elapsed time and timeouts."""

    def test_elapsed_from_stage_start(self, poll_clock, make_job):
        job = make_job(Stage.WAITING_FOR_DEPROVISION, started=T0)

        assert poll_clock.stage_elapsed(job, T0 + 90) == 90

    def test_timeout_is_strict(self, poll_clock, make_job):
        job = make_job(Stage.WAITING_FOR_GRACE_PERIOD, started=T0)

        assert not poll_clock.is_timed_out(job, T0 + 900)
        assert poll_clock.is_timed_out(job, T0 + 901)

    def test_custom_timeouts(self, make_job):
        clock = PollClock(timeouts=StageTimeouts(grace_period=60))
        job = make_job(Stage.WAITING_FOR_GRACE_PERIOD, started=T0)

        assert clock.is_timed_out(job, T0 + 61)
