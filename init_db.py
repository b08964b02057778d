"""
Database Initialization Script
Run this script to create all database tables and seed a demo organization
"""
import os
import sys
from datetime import timedelta
from app import create_app
from models import (db, utcnow, Organization, User, UserRole, Room, Announcement, AnnouncementType,
                    Schedule, ScheduleItem, SubscriptionStatus)

EVERY_DAY = [0, 1, 2, 3, 4, 5, 6]


def seed_demo_content(organization):
    """Rooms, announcements and a daily schedule for local development"""
    lobby = Room(name='Lobby', organization=organization)
    dining = Room(name='Dining Hall', organization=organization)

    breakfast = Announcement(
        organization=organization, title='Breakfast', type=AnnouncementType.TTS,
        text='Good morning! Breakfast is now being served in the dining hall.'
    )
    activities = Announcement(
        organization=organization, title='Afternoon activities', type=AnnouncementType.TTS,
        text='Afternoon activities begin in ten minutes in the lobby.'
    )
    chime = Announcement(
        organization=organization, title='Quiet hours chime', type=AnnouncementType.MP3,
        audio_url='https://example.com/audio/quiet-hours.mp3'
    )
    fire_drill = Announcement(
        organization=organization, title='Fire drill', type=AnnouncementType.TTS,
        text='This is a fire drill. Please follow staff instructions.'
    )

    daily = Schedule(name='Daily routine', organization=organization, active=True)
    daily.items.append(ScheduleItem(announcement=breakfast, time_of_day='08:00',
                                    days_of_week=EVERY_DAY, order=0))
    daily.items.append(ScheduleItem(announcement=activities, room=lobby, time_of_day='14:50',
                                    days_of_week=[1, 2, 3, 4, 5], order=0))
    daily.items.append(ScheduleItem(announcement=chime, time_of_day='21:00',
                                    days_of_week=EVERY_DAY, order=0))

    db.session.add_all([lobby, dining, breakfast, activities, chime, fire_drill, daily])


def init_database():
    """Initialize database with tables and seed data"""

    app = create_app()

    with app.app_context():
        # Drop all tables (use with caution in production!)
        print("Dropping existing tables...")
        db.drop_all()

        # Create all tables
        print("Creating database tables...")
        db.create_all()

        # Create the demo organization and its owner
        print("Creating demo organization and owner...")
        organization = Organization(
            name='Sunrise Care Home',
            timezone=app.config['DEFAULT_TIMEZONE'],
            subscription_status=SubscriptionStatus.TRIAL,
            trial_ends_at=utcnow() + timedelta(days=app.config['TRIAL_DAYS'])
        )
        owner = User(
            email=app.config['ADMIN_EMAIL'],
            name='Owner',
            role=UserRole.OWNER,
            organization=organization
        )
        owner.set_password(app.config['ADMIN_PASSWORD'])
        db.session.add_all([organization, owner])

        # Create sample data for testing (optional)
        if os.getenv('FLASK_ENV', 'development') == 'development':
            print("Adding sample data for development...")
            seed_demo_content(organization)

        # Commit all changes
        db.session.commit()

        print("\n" + "="*50)
        print("Database initialized successfully!")
        print("="*50)
        print(f"\nOwner credentials:")
        print(f"  Email:    {app.config['ADMIN_EMAIL']}")
        print(f"  Password: {app.config['ADMIN_PASSWORD']}")
        print("\nIMPORTANT: Change the default password after first login!")
        print("="*50 + "\n")


if __name__ == '__main__':
    confirm = input("This will delete all existing data. Continue? (yes/no): ")
    if confirm.lower() == 'yes':
        init_database()
    else:
        print("Database initialization cancelled.")
        sys.exit(0)
