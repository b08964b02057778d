"""
Schedule Utilities
Resolves which announcement slots apply to a room on a given org-local day,
and validates schedule item fields
"""
import re
from datetime import date, datetime
from typing import List, Dict, Optional, Any
from sqlalchemy import or_
from models import db, Organization, Schedule, ScheduleItem, Device
from utils.clock import local_today, sunday_weekday
from utils.errors import NotFoundError, ValidationError

TIME_OF_DAY_PATTERN = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')
DAY_NAMES = ['Sun', 'Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat']


class ResolvedSlot:
    """One schedule item that applies to a room on a specific day"""

    def __init__(self, item: ScheduleItem, schedule: Schedule):
        self.item = item
        self.schedule = schedule

    @property
    def source_schedule_id(self) -> int:
        return self.schedule.id

    @property
    def sort_key(self):
        # "HH:MM" is zero-padded 24h, so lexical order is chronological
        return (self.item.time_of_day, self.item.order, self.item.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.item.id,
            'scheduleId': self.schedule.id,
            'scheduleName': self.schedule.name,
            'timeOfDay': self.item.time_of_day,
            'daysOfWeek': sorted(self.item.days_of_week),
            'order': self.item.order,
            'room': self.item.room.to_summary() if self.item.room else None,
            'announcement': self.item.announcement.to_dict(),
        }


# ============================================================================
# VALIDATION
# ============================================================================

def validate_time_of_day(value: Any) -> str:
    """Accept only zero-padded 24-hour "HH:MM" strings"""
    if not isinstance(value, str) or not TIME_OF_DAY_PATTERN.match(value):
        raise ValidationError('Invalid time format (HH:MM)')
    return value


def validate_days_of_week(value: Any) -> List[int]:
    """Non-empty subset of 0..6 (0=Sunday); duplicates collapse"""
    if not isinstance(value, (list, tuple)) or not value:
        raise ValidationError('Select at least one day')
    days = set()
    for day in value:
        if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
            raise ValidationError('Days of week must be integers between 0 (Sunday) and 6 (Saturday)')
        days.add(day)
    return sorted(days)


def days_display(days: List[int]) -> str:
    """Human-readable weekday set"""
    days = sorted(set(days))
    if len(days) == 7:
        return 'Every day'
    if days == [1, 2, 3, 4, 5]:
        return 'Weekdays'
    if days == [0, 6]:
        return 'Weekends'
    return ', '.join(DAY_NAMES[d] for d in days)


# ============================================================================
# RESOLUTION
# ============================================================================

def resolve_schedule_for_date(organization_id: int, room_id: Optional[int], day: date) -> List[ResolvedSlot]:
    """
    Compute the ordered announcement slots for a room on an org-local date

    Args:
        organization_id: Owning organization
        room_id: Device's room, or None for a device without a room
        day: Org-local calendar date

    Returns:
        List of ResolvedSlot ordered by (timeOfDay, order); empty when nothing is scheduled
    """
    weekday = sunday_weekday(day)

    query = ScheduleItem.query.join(Schedule).filter(
        Schedule.organization_id == organization_id,
        Schedule.active.is_(True),
        ScheduleItem.enabled.is_(True),
    )

    # "All rooms" items always apply; room-specific ones only to their room
    if room_id is None:
        query = query.filter(ScheduleItem.room_id.is_(None))
    else:
        query = query.filter(or_(ScheduleItem.room_id.is_(None), ScheduleItem.room_id == room_id))

    # days_of_week is a JSON list, so weekday membership is checked in Python
    slots = [ResolvedSlot(item, item.schedule) for item in query.all() if item.runs_on(weekday)]
    slots.sort(key=lambda slot: slot.sort_key)
    return slots


def resolve_today_schedule(organization_id: int, room_id: Optional[int],
                           now: Optional[datetime] = None) -> List[ResolvedSlot]:
    """Resolve today's slots, where "today" is taken in the organization's timezone"""
    organization = db.session.get(Organization, organization_id)
    if organization is None:
        raise NotFoundError('Organization not found')
    return resolve_schedule_for_date(organization_id, room_id, local_today(organization.timezone, now))


def get_device_schedule(device: Device, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Build the player schedule payload for a device

    The payload is tagged with the org-local date it was computed for so the
    device can refuse to reuse it on another day.
    """
    organization = device.organization
    today = local_today(organization.timezone, now)
    slots = resolve_schedule_for_date(organization.id, device.room_id, today)

    return {
        'device': {'id': device.id, 'name': device.name},
        'room': device.room.to_summary() if device.room else None,
        'organization': organization.to_summary(),
        'timezone': organization.timezone,
        'date': today.isoformat(),
        'dayOfWeek': sunday_weekday(today),
        'items': [slot.to_dict() for slot in slots],
    }
