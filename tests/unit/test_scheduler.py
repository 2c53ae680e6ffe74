"""
Tests for the recurring import scheduler.
"""

from datetime import datetime
from unittest.mock import Mock

import pytest

from streamfeed.config.settings import ScheduleFrequency, ScheduleSettings, set_settings
from streamfeed.database.models import ImportOutcome
from streamfeed.pipeline.factory import build_coordinator
from streamfeed.scheduler.import_scheduler import ImportScheduler
from streamfeed.utils.exceptions import ConfigurationError, TransportError

START = datetime(2024, 1, 1, 6, 0)


@pytest.fixture
def coordinator():
    mock = Mock()
    mock.run_cycle.return_value = ImportOutcome(downloaded=1, imported=1)
    return mock


def _scheduler(coordinator, frequency=ScheduleFrequency.DAILY, enabled=True, **kwargs):
    schedule = ScheduleSettings(enabled=enabled, start=START, frequency=frequency)
    return ImportScheduler(coordinator, schedule, **kwargs)


class TestOccurrences:

    @pytest.mark.parametrize("frequency,now,expected", [
        (ScheduleFrequency.DAILY, datetime(2024, 1, 1, 5, 0), datetime(2024, 1, 1, 6, 0)),
        (ScheduleFrequency.DAILY, datetime(2024, 1, 1, 6, 0), datetime(2024, 1, 2, 6, 0)),
        (ScheduleFrequency.DAILY, datetime(2024, 1, 3, 12, 0), datetime(2024, 1, 4, 6, 0)),
        (ScheduleFrequency.WEEKLY, datetime(2024, 1, 3, 12, 0), datetime(2024, 1, 8, 6, 0)),
        (ScheduleFrequency.BIWEEKLY, datetime(2024, 1, 9, 0, 0), datetime(2024, 1, 15, 6, 0)),
    ])
    def test_next_run_after(self, coordinator, frequency, now, expected):
        assert _scheduler(coordinator, frequency).next_run_after(now) == expected

    def test_first_run_includes_exact_occurrence(self, coordinator):
        scheduler = _scheduler(coordinator, ScheduleFrequency.WEEKLY)

        assert scheduler.first_run_at_or_after(datetime(2024, 1, 8, 6, 0)) == datetime(2024, 1, 8, 6, 0)
        assert scheduler.first_run_at_or_after(datetime(2024, 1, 8, 6, 1)) == datetime(2024, 1, 15, 6, 0)

    def test_start_required(self, coordinator):
        with pytest.raises(ConfigurationError):
            ImportScheduler(coordinator, ScheduleSettings(enabled=False))


class TestRunPending:

    def test_nothing_due_before_start(self, coordinator):
        scheduler = _scheduler(coordinator)

        assert scheduler.run_pending(datetime(2023, 12, 31, 23, 0)) is None
        coordinator.run_cycle.assert_not_called()

    def test_due_run_deletes_after_download(self, coordinator):
        scheduler = _scheduler(coordinator)
        scheduler.run_pending(datetime(2023, 12, 31, 23, 0))

        outcome = scheduler.run_pending(datetime(2024, 1, 1, 6, 0, 30))

        assert outcome.imported == 1
        coordinator.run_cycle.assert_called_once_with(delete_after_download=True)
        assert scheduler.next_run == datetime(2024, 1, 2, 6, 0)

    def test_missed_runs_are_not_caught_up(self, coordinator):
        scheduler = _scheduler(coordinator)
        scheduler.run_pending(datetime(2023, 12, 31, 23, 0))

        scheduler.run_pending(datetime(2024, 1, 5, 9, 0))
        scheduler.run_pending(datetime(2024, 1, 5, 9, 1))

        assert coordinator.run_cycle.call_count == 1
        assert scheduler.next_run == datetime(2024, 1, 6, 6, 0)

    def test_delete_can_be_disabled(self, coordinator):
        scheduler = _scheduler(coordinator, delete_after_download=False)
        scheduler.run_pending(START)

        coordinator.run_cycle.assert_called_once_with(delete_after_download=False)

    def test_settings_reloaded_before_each_cycle(self, coordinator, test_settings):
        loaded = [
            test_settings.model_copy(update={"feed": test_settings.feed.model_copy(update={"page_size": 5})}),
            test_settings.model_copy(update={"feed": test_settings.feed.model_copy(update={"page_size": 20})}),
        ]
        scheduler = _scheduler(coordinator, settings_loader=lambda: loaded.pop(0))

        scheduler.run_pending(START)
        scheduler.run_pending(datetime(2024, 1, 2, 6, 0))

        configs = [call.kwargs["config"] for call in coordinator.run_cycle.call_args_list]
        assert [config.page_size for config in configs] == [5, 20]
        assert loaded == []

    def test_reload_failure_keeps_previous_settings(self, coordinator):
        def broken_loader():
            raise ConfigurationError("Failed to initialize settings: bad page size")

        scheduler = _scheduler(coordinator, settings_loader=broken_loader)

        outcome = scheduler.run_pending(START)

        assert outcome.imported == 1
        coordinator.run_cycle.assert_called_once_with(delete_after_download=True)

    def test_failed_cycle_still_advances_schedule(self, coordinator):
        coordinator.run_cycle.side_effect = TransportError("queue down")
        scheduler = _scheduler(coordinator)

        with pytest.raises(TransportError):
            scheduler.run_pending(START)

        assert scheduler.next_run == datetime(2024, 1, 2, 6, 0)


class TestRunForever:

    def test_polls_until_iterations_exhausted(self, coordinator):
        times = iter([datetime(2024, 1, 1, 5, 0), datetime(2024, 1, 1, 6, 0), datetime(2024, 1, 1, 7, 0)])
        sleeps = []
        scheduler = _scheduler(coordinator, clock=lambda: next(times), sleep=sleeps.append)

        scheduler.run_forever(poll_seconds=30, max_iterations=3)

        assert coordinator.run_cycle.call_count == 1
        assert sleeps == [30, 30]
        assert scheduler.running is False

    def test_errors_do_not_stop_the_loop(self, coordinator):
        coordinator.run_cycle.side_effect = [TransportError("down"), ImportOutcome()]
        times = iter([datetime(2024, 1, 1, 6, 0), datetime(2024, 1, 2, 6, 0)])
        scheduler = _scheduler(coordinator, clock=lambda: next(times), sleep=lambda s: None)

        scheduler.run_forever(max_iterations=2)

        assert coordinator.run_cycle.call_count == 2

    def test_stop_ends_loop(self, coordinator):
        scheduler = _scheduler(coordinator, clock=lambda: datetime(2023, 1, 1), sleep=lambda s: scheduler.stop())

        scheduler.run_forever(poll_seconds=1)

        assert scheduler.running is False

    def test_disabled_schedule_refuses_to_run(self, coordinator):
        scheduler = _scheduler(coordinator, enabled=False)

        with pytest.raises(ConfigurationError):
            scheduler.run_forever(max_iterations=1)


class TestCredentialRotation:

    def test_rotated_credentials_used_by_next_scheduled_cycle(self, test_settings, db_connection):
        coordinator = build_coordinator(db=db_connection)
        response = Mock(status_code=200)
        response.json.return_value = {"errorOccurred": False, "arrUid": [], "arrTitle": []}
        coordinator.queue.session = Mock()
        coordinator.queue.session.post.return_value = response
        usernames = iter(["first-user", "second-user"])

        def reload_settings():
            fresh = test_settings.model_copy(update={
                "feed": test_settings.feed.model_copy(update={"username": next(usernames)}),
            })
            set_settings(fresh)
            return fresh

        scheduler = _scheduler(coordinator, settings_loader=reload_settings)
        scheduler.run_pending(START)
        scheduler.run_pending(datetime(2024, 1, 2, 6, 0))

        sent = [call.kwargs["json"]["username"] for call in coordinator.queue.session.post.call_args_list]
        assert sent == ["first-user", "second-user"]
