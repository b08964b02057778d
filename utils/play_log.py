"""
Play Log Service
Idempotent recording of playback outcomes keyed by (device, announcement, scheduled_at)
"""
import logging
from datetime import datetime
from sqlalchemy.exc import IntegrityError
from models import db, utcnow, PlayLog, PlayStatus, Announcement
from utils.clock import to_naive_utc
from utils.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

REPORTABLE_STATUSES = (PlayStatus.PLAYED, PlayStatus.SKIPPED, PlayStatus.FAILED)


def parse_status(value):
    """Map a reported status string to PlayStatus (SCHEDULED is server-side only)"""
    try:
        status = PlayStatus(value)
    except ValueError:
        raise ValidationError('Invalid status')
    if status not in REPORTABLE_STATUSES:
        raise ValidationError('Invalid status')
    return status


def parse_timestamp(value, field='scheduledAt'):
    """Parse an ISO-8601 timestamp (Z suffix accepted) into naive UTC; field names the input in errors"""
    if not isinstance(value, str) or not value:
        raise ValidationError(f'{field} required')
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'Invalid {field}')
    return to_naive_utc(parsed)


def _apply(log, status, now):
    log.status = status
    if status == PlayStatus.PLAYED:
        log.played_at = now


def _find_log(device_id, announcement_id, scheduled_at):
    return PlayLog.query.filter_by(device_id=device_id, announcement_id=announcement_id,
                                   scheduled_at=scheduled_at).first()


def upsert_play_log(device, announcement_id, scheduled_at, status, now=None):
    """
    Record a playback outcome for a slot

    Re-reporting the same (device, announcement, scheduled_at) updates the
    existing row's status instead of inserting a duplicate.

    Args:
        device (Device): Reporting device (supplies organization and room)
        announcement_id (int): Announcement that was played
        scheduled_at (datetime): Slot instant
        status (PlayStatus): PLAYED, SKIPPED or FAILED

    Returns:
        tuple: (PlayLog, created)
    """
    now = to_naive_utc(now) if now is not None else utcnow()
    scheduled_at = to_naive_utc(scheduled_at)

    announcement = Announcement.query.filter_by(id=announcement_id,
                                                organization_id=device.organization_id).first()
    if announcement is None:
        raise NotFoundError('Announcement not found')

    existing = _find_log(device.id, announcement_id, scheduled_at)
    if existing is not None:
        _apply(existing, status, now)
        db.session.commit()
        return existing, False

    log = PlayLog(
        organization_id=device.organization_id,
        room_id=device.room_id,
        device_id=device.id,
        announcement_id=announcement_id,
        scheduled_at=scheduled_at
    )
    _apply(log, status, now)

    try:
        with db.session.begin_nested():
            db.session.add(log)
    except IntegrityError:
        # Another report for the same slot won the insert
        existing = _find_log(device.id, announcement_id, scheduled_at)
        _apply(existing, status, now)
        db.session.commit()
        return existing, False

    db.session.commit()
    logger.debug(f"Play log device={device.id} announcement={announcement_id} "
                 f"at={scheduled_at} {status.value}")
    return log, True


def recent_play_logs(organization_id, limit=50):
    return PlayLog.query.filter_by(organization_id=organization_id)\
        .order_by(PlayLog.scheduled_at.desc(), PlayLog.id.desc()).limit(limit).all()
