from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from conftest import make_announcement, make_device, make_room
from models import PlayLog, PlayStatus
from utils.errors import NotFoundError, ValidationError
from utils import play_log
from utils.play_log import upsert_play_log, parse_status, parse_timestamp

SLOT = datetime(2025, 6, 3, 13, 0, tzinfo=timezone.utc)


def test_same_slot_updates_instead_of_duplicating(org):
    device, _ = make_device(org, make_room(org))
    announcement = make_announcement(org)

    first, created = upsert_play_log(device, announcement.id, SLOT, PlayStatus.FAILED)
    second, created_again = upsert_play_log(device, announcement.id, SLOT, PlayStatus.PLAYED)

    assert created and not created_again
    assert first.id == second.id
    assert PlayLog.query.count() == 1
    assert second.status == PlayStatus.PLAYED


def test_played_at_set_only_when_played(org):
    device, _ = make_device(org)
    announcement = make_announcement(org)
    played_now = datetime(2025, 6, 3, 13, 0, 4, tzinfo=timezone.utc)

    skipped, _ = upsert_play_log(device, announcement.id, SLOT, PlayStatus.SKIPPED, now=played_now)
    assert skipped.played_at is None

    played, _ = upsert_play_log(device, announcement.id, SLOT, PlayStatus.PLAYED, now=played_now)
    assert played.played_at == datetime(2025, 6, 3, 13, 0, 4)


def test_log_copies_organization_and_room_from_device(org):
    room = make_room(org)
    device, _ = make_device(org, room)
    log, _ = upsert_play_log(device, make_announcement(org).id, SLOT, PlayStatus.PLAYED)

    assert log.organization_id == org.id
    assert log.room_id == room.id
    assert log.scheduled_at == datetime(2025, 6, 3, 13, 0)


def test_different_slots_are_separate_rows(org):
    device, _ = make_device(org)
    announcement = make_announcement(org)
    upsert_play_log(device, announcement.id, SLOT, PlayStatus.PLAYED)
    upsert_play_log(device, announcement.id, SLOT.replace(hour=14), PlayStatus.PLAYED)

    assert PlayLog.query.count() == 2


def test_announcement_must_belong_to_device_organization(org, other_org):
    device, _ = make_device(org)
    with pytest.raises(NotFoundError):
        upsert_play_log(device, make_announcement(other_org).id, SLOT, PlayStatus.PLAYED)


def test_parse_status():
    assert parse_status('PLAYED') == PlayStatus.PLAYED
    for bad in ('SCHEDULED', 'played', None):
        with pytest.raises(ValidationError):
            parse_status(bad)


def test_parse_timestamp_normalizes_to_naive_utc():
    assert parse_timestamp('2025-06-03T13:00:00.000Z') == datetime(2025, 6, 3, 13, 0)
    assert parse_timestamp('2025-06-03T09:00:00-04:00') == datetime(2025, 6, 3, 13, 0)
    with pytest.raises(ValidationError):
        parse_timestamp('yesterday')


def test_insert_race_for_same_slot_updates_the_winning_row(org):
    device, _ = make_device(org)
    announcement = make_announcement(org)
    winner, _ = upsert_play_log(device, announcement.id, SLOT, PlayStatus.FAILED)

    real_find = play_log._find_log
    lookups = []

    def find_after_race(*args):
        # First lookup runs before the competing insert commits
        lookups.append(args)
        return None if len(lookups) == 1 else real_find(*args)

    with patch('utils.play_log._find_log', side_effect=find_after_race):
        log, created = upsert_play_log(device, announcement.id, SLOT, PlayStatus.PLAYED)

    assert not created
    assert log.id == winner.id
    assert len(lookups) == 2
    assert PlayLog.query.count() == 1
    assert PlayLog.query.one().status == PlayStatus.PLAYED


def test_parse_timestamp_error_names_the_field():
    with pytest.raises(ValidationError, match='Invalid expiresAt'):
        parse_timestamp('soon', field='expiresAt')
