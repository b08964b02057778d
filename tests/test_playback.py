"""
Playback engine tests with a scripted fake audio output
"""
from datetime import datetime, timedelta, timezone

import pytest

from player_client.playback import PlaybackEngine, PLAYED, FAILED

TZ = 'America/New_York'
# Tuesday 2025-06-03 09:00:00 in New York
NINE_AM = datetime(2025, 6, 3, 13, 0, 0, tzinfo=timezone.utc)


class FakeJob:
    def __init__(self):
        self.outcome = None
        self.stopped = False

    def poll(self):
        return self.outcome

    def stop(self):
        self.stopped = True


class FakeAudio:
    def __init__(self, fail_to_start=False):
        self.played = []
        self.jobs = []
        self.fail_to_start = fail_to_start

    def play(self, announcement):
        self.played.append(announcement['id'])
        if self.fail_to_start:
            raise OSError('no audio device')
        job = FakeJob()
        self.jobs.append(job)
        return job

    def finish(self, success=True):
        self.jobs[-1].outcome = success


def announcement(announcement_id, title='Announcement'):
    return {'id': announcement_id, 'title': title, 'type': 'TTS', 'text': title, 'language': 'en-US'}


def item(item_id, time_of_day, announcement_id=None):
    return {'id': item_id, 'timeOfDay': time_of_day, 'order': 0,
            'announcement': announcement(announcement_id or item_id * 10)}


def schedule(*items, day='2025-06-03'):
    return {'date': day, 'timezone': TZ, 'items': list(items)}


@pytest.fixture
def audio():
    return FakeAudio()


@pytest.fixture
def reports():
    return []


@pytest.fixture
def engine(audio, reports):
    return PlaybackEngine(audio, TZ, report=lambda request, status: reports.append((request, status)))


def test_due_item_plays_exactly_once(engine, audio):
    today = schedule(item(1, '09:00'))

    started = engine.tick(NINE_AM, today, None)
    assert started.source_id == 1
    audio.finish()

    assert engine.tick(NINE_AM + timedelta(seconds=30), today, None) is None
    assert audio.played == [10]


def test_reports_outcome_with_slot_timestamp(engine, audio, reports):
    engine.tick(NINE_AM + timedelta(seconds=12), schedule(item(1, '09:00')), None)
    audio.finish(success=True)
    assert not engine.is_playing()

    request, status = reports[0]
    assert status == PLAYED
    assert request.announcement_id == 10
    assert request.scheduled_at_iso == '2025-06-03T13:00:00.000Z'


def test_items_at_other_minutes_do_not_play(engine, audio):
    assert engine.tick(NINE_AM, schedule(item(1, '08:59'), item(2, '09:01')), None) is None
    assert audio.played == []


def test_schedule_for_another_day_never_plays(engine, audio):
    stale = schedule(item(1, '09:00'), day='2025-06-02')
    assert engine.tick(NINE_AM, stale, None) is None
    assert audio.played == []


def test_same_minute_items_play_in_order_one_at_a_time(engine, audio):
    today = schedule(item(1, '09:00'), item(2, '09:00'))

    assert engine.tick(NINE_AM, today, None).source_id == 1
    assert engine.tick(NINE_AM + timedelta(seconds=5), today, None) is None  # still playing
    audio.finish()
    assert engine.tick(NINE_AM + timedelta(seconds=10), today, None).source_id == 2


def test_emergency_waits_for_current_playback_then_preempts_schedule(engine, audio):
    today = schedule(item(1, '09:00'), item(2, '09:00'))
    emergency = {'active': True, 'id': 77, 'announcement': announcement(500, 'Evacuate')}

    engine.tick(NINE_AM, today, None)
    assert engine.tick(NINE_AM + timedelta(seconds=1), today, emergency) is None
    audio.finish()

    started = engine.tick(NINE_AM + timedelta(seconds=2), today, emergency)
    assert started.kind == 'emergency'
    assert started.announcement_id == 500
    audio.finish()

    assert engine.tick(NINE_AM + timedelta(seconds=3), today, emergency).source_id == 2
    assert audio.played == [10, 500, 20]


def test_emergency_plays_once_per_session(engine, audio):
    emergency = {'active': True, 'id': 5, 'announcement': announcement(500)}

    engine.tick(NINE_AM, None, emergency)
    audio.finish()
    assert engine.tick(NINE_AM + timedelta(minutes=1), None, emergency) is None
    assert engine.tick(NINE_AM + timedelta(minutes=2), None, {'active': False}) is None
    assert audio.played == [500]


def test_failure_is_reported_and_slot_is_not_retried(engine, audio, reports):
    today = schedule(item(1, '09:00'))

    engine.tick(NINE_AM, today, None)
    audio.finish(success=False)

    assert engine.tick(NINE_AM + timedelta(seconds=20), today, None) is None
    assert [status for _, status in reports] == [FAILED]
    assert audio.played == [10]


def test_audio_that_cannot_start_is_reported_failed(reports):
    engine = PlaybackEngine(FakeAudio(fail_to_start=True), TZ,
                            report=lambda request, status: reports.append(status))

    engine.tick(NINE_AM, schedule(item(1, '09:00')), None)
    assert not engine.is_playing()
    assert reports == [FAILED]


def test_played_set_resets_on_new_local_day(engine, audio):
    engine.tick(NINE_AM, schedule(item(1, '09:00')), None)
    audio.finish()

    wednesday = NINE_AM + timedelta(days=1)
    assert engine.tick(wednesday, schedule(item(1, '09:00'), day='2025-06-04'), None).source_id == 1


def test_next_item_has_no_wraparound(engine):
    today = schedule(item(1, '08:00'), item(2, '09:00'), item(3, '12:30'))

    assert engine.next_item(NINE_AM, today)['id'] == 3
    assert engine.next_item(NINE_AM.replace(hour=17), today) is None


def test_report_errors_do_not_escape(audio):
    def broken_report(request, status):
        raise RuntimeError('network down')

    engine = PlaybackEngine(audio, TZ, report=broken_report)
    engine.tick(NINE_AM, schedule(item(1, '09:00')), None)
    audio.finish()
    assert engine.is_playing() is False
