"""
Device Session Service
Pairing code lifecycle, heartbeat recording and online status
"""
import logging
import secrets
import string
from datetime import timedelta
from flask import current_app
from models import db, utcnow, Device, DeviceStatus
from utils.clock import to_naive_utc
from utils.errors import ConflictError, ExpiredError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PAIRING_CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 20
DEFAULT_ONLINE_WINDOW_SECONDS = 120


def _now(now=None):
    return to_naive_utc(now) if now is not None else utcnow()


def is_online(last_seen_at, now=None, window_seconds=None):
    """
    A device is online if it sent a heartbeat within the online window

    Args:
        last_seen_at (datetime): Stored naive-UTC heartbeat timestamp (or None)
        now (datetime): Evaluation instant, defaults to the current time
        window_seconds (int): Override for DEVICE_ONLINE_WINDOW_SECONDS

    Returns:
        bool
    """
    if last_seen_at is None:
        return False
    if window_seconds is None:
        try:
            window_seconds = current_app.config.get('DEVICE_ONLINE_WINDOW_SECONDS',
                                                    DEFAULT_ONLINE_WINDOW_SECONDS)
        except RuntimeError:
            # Outside an application context
            window_seconds = DEFAULT_ONLINE_WINDOW_SECONDS
    return (_now(now) - to_naive_utc(last_seen_at)) < timedelta(seconds=window_seconds)


def generate_pairing_code():
    """Random 6-digit numeric code (leading zeros allowed)"""
    return ''.join(secrets.choice(string.digits) for _ in range(PAIRING_CODE_LENGTH))


def _unique_pairing_code():
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_pairing_code()
        if Device.query.filter_by(pairing_code=code).first() is None:
            return code
    raise ConflictError('Could not allocate a unique pairing code')


def issue_pairing_code(device, now=None):
    """
    Give a PENDING device a fresh pairing code valid for PAIRING_CODE_TTL_MINUTES

    Raises:
        ConflictError: the device is already paired
    """
    if device.status == DeviceStatus.PAIRED:
        raise ConflictError('Device is already paired')

    ttl = current_app.config.get('PAIRING_CODE_TTL_MINUTES', 15)
    device.pairing_code = _unique_pairing_code()
    device.pairing_expires_at = _now(now) + timedelta(minutes=ttl)
    device.status = DeviceStatus.PENDING
    db.session.commit()

    logger.info(f"Pairing code issued for device {device.id} (expires {device.pairing_expires_at})")
    return device.pairing_code


def redeem_pairing_code(code, now=None):
    """
    Pair the device holding this code

    The code is single use: on success it is cleared together with its expiry,
    the device becomes PAIRED and a new API key is issued.

    Returns:
        tuple: (device, api_key) where api_key is shown to the caller only once

    Raises:
        ValidationError: code is not 6 digits
        NotFoundError: no pending device holds the code
        ExpiredError: the code's validity window has passed
    """
    if not isinstance(code, str) or len(code) != PAIRING_CODE_LENGTH or not code.isdigit():
        raise ValidationError('Invalid pairing code')

    now = _now(now)
    device = Device.query.filter_by(pairing_code=code, status=DeviceStatus.PENDING).first()
    if device is None:
        raise NotFoundError('Invalid pairing code')

    if device.pairing_expires_at is not None and device.pairing_expires_at < now:
        raise ExpiredError('Pairing code expired')

    api_key = Device.generate_api_key()
    device.status = DeviceStatus.PAIRED
    device.pairing_code = None
    device.pairing_expires_at = None
    device.api_key_hash = Device.hash_api_key(api_key)
    device.last_seen_at = now
    db.session.commit()

    logger.info(f"Device {device.id} ({device.name}) paired for org {device.organization_id}")
    return device, api_key


def record_heartbeat(device_id, now=None):
    """
    Stamp last_seen_at for a device

    Raises:
        NotFoundError: unknown device
    """
    device = db.session.get(Device, device_id)
    if device is None:
        raise NotFoundError('Device not found')

    device.last_seen_at = _now(now)
    db.session.commit()
    return device


def unpair_device(device):
    """Return a device to PENDING and revoke its API key"""
    device.status = DeviceStatus.PENDING
    device.api_key_hash = None
    device.pairing_code = None
    device.pairing_expires_at = None
    db.session.commit()
    logger.info(f"Device {device.id} unpaired")
    return device


def online_device_count(organization_id, now=None):
    devices = Device.query.filter_by(organization_id=organization_id).all()
    return sum(1 for d in devices if is_online(d.last_seen_at, now))


def parse_device_id(value):
    """Device ids arrive as query/body values; anything non-integer is a 400"""
    if isinstance(value, bool):
        raise ValidationError('deviceId required')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError('deviceId required')

