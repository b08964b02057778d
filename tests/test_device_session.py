from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_device, make_room
from models import db, Device, DeviceStatus
from utils.device_session import (generate_pairing_code, issue_pairing_code, redeem_pairing_code,
                                  record_heartbeat, is_online, unpair_device)
from utils.errors import ConflictError, ExpiredError, NotFoundError, ValidationError

NOW = datetime(2025, 6, 3, 13, 0, tzinfo=timezone.utc)


def test_codes_are_six_digits():
    for _ in range(200):
        code = generate_pairing_code()
        assert len(code) == 6 and code.isdigit()


def test_issue_sets_fifteen_minute_window(org):
    device, _ = make_device(org, paired=False)
    code = issue_pairing_code(device, now=NOW)

    assert device.pairing_code == code
    assert device.pairing_expires_at == datetime(2025, 6, 3, 13, 15)
    assert device.status == DeviceStatus.PENDING


def test_reissue_replaces_code_for_pending_device(org):
    device, _ = make_device(org, paired=False)
    issue_pairing_code(device, now=NOW)
    issue_pairing_code(device, now=NOW + timedelta(minutes=20))

    assert device.pairing_expires_at == datetime(2025, 6, 3, 13, 35)


def test_issue_rejects_paired_device(org):
    device, _ = make_device(org, paired=True)
    with pytest.raises(ConflictError):
        issue_pairing_code(device)
    assert device.pairing_code is None


def test_redeem_pairs_device_and_clears_code(org):
    room = make_room(org)
    device, _ = make_device(org, room, paired=False)
    code = issue_pairing_code(device, now=NOW)

    paired, api_key = redeem_pairing_code(code, now=NOW + timedelta(minutes=5))

    assert paired.id == device.id
    assert paired.status == DeviceStatus.PAIRED
    assert paired.pairing_code is None and paired.pairing_expires_at is None
    assert paired.last_seen_at == datetime(2025, 6, 3, 13, 5)
    assert paired.verify_api_key(api_key)


def test_code_is_single_use(org):
    device, _ = make_device(org, paired=False)
    code = issue_pairing_code(device, now=NOW)
    redeem_pairing_code(code, now=NOW)

    with pytest.raises(NotFoundError):
        redeem_pairing_code(code, now=NOW)


def test_expired_code_is_distinct_from_unknown_code(org):
    device, _ = make_device(org, paired=False)
    code = issue_pairing_code(device, now=NOW)

    with pytest.raises(ExpiredError):
        redeem_pairing_code(code, now=NOW + timedelta(minutes=16))

    unknown = '000000' if code != '000000' else '111111'
    with pytest.raises(NotFoundError):
        redeem_pairing_code(unknown, now=NOW)

    db.session.refresh(device)
    assert device.status == DeviceStatus.PENDING


@pytest.mark.parametrize('code', ['12345', '1234567', 'abcdef', None, 123456])
def test_malformed_code(app, code):
    with pytest.raises(ValidationError):
        redeem_pairing_code(code)


def test_heartbeat_updates_last_seen_only(org):
    device, _ = make_device(org, paired=False)
    record_heartbeat(device.id, now=NOW)

    assert device.last_seen_at == datetime(2025, 6, 3, 13, 0)
    assert device.status == DeviceStatus.PENDING


def test_heartbeat_unknown_device(app):
    with pytest.raises(NotFoundError):
        record_heartbeat(4242)


def test_online_window(app):
    last_seen = datetime(2025, 6, 3, 13, 0)
    assert is_online(last_seen, NOW + timedelta(seconds=119))
    assert not is_online(last_seen, NOW + timedelta(seconds=120))
    assert not is_online(None, NOW)


def test_unpair_revokes_key(org):
    device, api_key = make_device(org, paired=True)
    unpair_device(device)

    device = db.session.get(Device, device.id)
    assert device.status == DeviceStatus.PENDING
    assert not device.verify_api_key(api_key)
