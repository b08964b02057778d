"""
Shared fixtures: a testing app on in-memory SQLite plus small factories
"""
import pytest

from app import create_app
from models import (db, Organization, User, UserRole, Room, Device, DeviceStatus, Announcement,
                    AnnouncementType, Schedule, ScheduleItem, SubscriptionStatus)

PASSWORD = 'correct-horse'
WEEKDAYS = [1, 2, 3, 4, 5]
EVERY_DAY = [0, 1, 2, 3, 4, 5, 6]


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def org(app):
    organization = Organization(name='Sunrise Care', timezone='America/New_York',
                                subscription_status=SubscriptionStatus.ACTIVE)
    db.session.add(organization)
    db.session.commit()
    return organization


@pytest.fixture
def other_org(app):
    organization = Organization(name='Harbor View', timezone='Europe/London')
    db.session.add(organization)
    db.session.commit()
    return organization


def make_user(organization, email='owner@example.com', role=UserRole.OWNER):
    user = User(email=email, name=email.split('@')[0], role=role, organization=organization)
    user.set_password(PASSWORD)
    db.session.add(user)
    db.session.commit()
    return user


def make_room(organization, name='Lobby'):
    room = Room(name=name, organization=organization)
    db.session.add(room)
    db.session.commit()
    return room


def make_announcement(organization, title='Lunch', text='Lunch is served', audio_url=None):
    if audio_url:
        announcement = Announcement(organization=organization, title=title,
                                    type=AnnouncementType.MP3, audio_url=audio_url)
    else:
        announcement = Announcement(organization=organization, title=title,
                                    type=AnnouncementType.TTS, text=text)
    db.session.add(announcement)
    db.session.commit()
    return announcement


def make_schedule(organization, name='Daily', active=True):
    schedule = Schedule(name=name, organization=organization, active=active)
    db.session.add(schedule)
    db.session.commit()
    return schedule


def make_item(schedule, announcement, time_of_day='09:00', days=None, room=None, order=0, enabled=True):
    item = ScheduleItem(schedule_id=schedule.id, announcement_id=announcement.id,
                        room_id=room.id if room else None, time_of_day=time_of_day,
                        days_of_week=days if days is not None else EVERY_DAY,
                        order=order, enabled=enabled)
    db.session.add(item)
    db.session.commit()
    return item


def make_device(organization, room=None, name='Lobby TV', paired=True):
    """Returns (device, api_key); api_key is None for a pending device"""
    device = Device(name=name, organization=organization, room_id=room.id if room else None,
                    status=DeviceStatus.PAIRED if paired else DeviceStatus.PENDING)
    api_key = None
    if paired:
        api_key = Device.generate_api_key()
        device.api_key_hash = Device.hash_api_key(api_key)
    db.session.add(device)
    db.session.commit()
    return device, api_key


def login(client, email='owner@example.com', password=PASSWORD):
    return client.post('/admin/api/login', json={'email': email, 'password': password})
