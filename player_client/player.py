#!/usr/bin/env python3
"""
CareVoice Player Client
Pairs with the CareVoice server, keeps today's schedule and the emergency state
fresh, and plays announcements through the local audio output
"""

import os
import sys
import json
import time
import logging

import requests

from player_client.audio import AudioOutput
from player_client.cache import ScheduleCache
from player_client.playback import PlaybackEngine
from utils.clock import local_today, utc_now

# Configuration - Auto-detect installation directory
INSTALL_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_FILE = os.path.join(INSTALL_DIR, 'config.json')
CACHE_DIR = os.path.join(INSTALL_DIR, 'cache')
LOG_FILE = os.path.join(INSTALL_DIR, 'logs', 'player.log')
SCHEDULE_CHECK_INTERVAL = 60  # seconds
EMERGENCY_CHECK_INTERVAL = 15
HEARTBEAT_INTERVAL = 60
TICK_INTERVAL = 1
REQUEST_TIMEOUT = 10
DEFAULT_TIMEZONE = 'America/New_York'

logger = logging.getLogger(__name__)


def setup_logging(log_file=LOG_FILE):
    """File plus stdout logging for the player process"""
    os.makedirs(os.path.dirname(log_file), exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )


class PairingError(Exception):
    """Pairing was rejected by the server"""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class CareVoicePlayer:
    """Main player class for a CareVoice device"""

    def __init__(self, config_file=CONFIG_FILE, audio=None):
        self.config_file = config_file
        self.config = self.load_config()

        self.server_url = self.config.get('server_url', '').rstrip('/')
        self.device_id = self.config.get('device_id')
        self.api_key = self.config.get('api_key')
        self.timezone = self.config.get('timezone') or DEFAULT_TIMEZONE

        self.cache = ScheduleCache(self.config.get('cache_dir') or CACHE_DIR, self.device_id)
        self.engine = PlaybackEngine(audio or AudioOutput(), self.timezone, report=self.report_playback)

        self.schedule = None
        self.emergency = None

        logger.info('CareVoice Player initialized')
        logger.info(f'Server: {self.server_url}')
        logger.info(f'Device ID: {self.device_id}')

    def load_config(self):
        """Load configuration from JSON file"""
        try:
            with open(self.config_file, 'r') as f:
                config = json.load(f)
            logger.info('Configuration loaded successfully')
            return config
        except FileNotFoundError:
            logger.error(f'Config file not found: {self.config_file}')
            logger.info('Creating default config file...')

            # Create default config
            default_config = {
                'server_url': 'http://127.0.0.1:5000',
                'device_id': None,
                'api_key': None,
                'timezone': None,
                'organization': None,
                'room': None,
                'cache_dir': CACHE_DIR
            }

            self.save_config(default_config)
            return default_config

    def save_config(self, config):
        """Save configuration to JSON file"""
        try:
            with open(self.config_file, 'w') as f:
                json.dump(config, f, indent=2)
            logger.info('Configuration saved')
        except OSError as e:
            logger.error(f'Failed to save config: {e}')

    @property
    def is_paired(self):
        return bool(self.device_id and self.api_key)

    def get_headers(self):
        """Get API request headers"""
        return {'X-Device-Key': self.api_key}

    def set_timezone(self, tz_name):
        if tz_name and tz_name != self.timezone:
            logger.info(f'Organization timezone: {tz_name}')
            self.timezone = tz_name
            self.engine.timezone_name = tz_name
            self.config['timezone'] = tz_name
            self.save_config(self.config)

    # ------------------------------------------------------------------
    # Pairing
    # ------------------------------------------------------------------

    def pair(self, code):
        """
        Redeem a pairing code and persist the device credentials

        Raises:
            PairingError: invalid (404), expired (410) or malformed (400) code
        """
        logger.info('Pairing device with server...')

        try:
            response = requests.post(
                f'{self.server_url}/api/pair',
                json={'pairingCode': code},
                timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as e:
            raise PairingError(f'Could not reach server: {e}')

        if response.status_code != 200:
            try:
                message = response.json().get('error', response.text)
            except ValueError:
                message = response.text
            if response.status_code == 410:
                message = f'{message}. Ask an administrator for a new code.'
            raise PairingError(message, response.status_code)

        result = response.json()
        self.device_id = result['deviceId']
        self.api_key = result['apiKey']
        self.config.update({
            'device_id': self.device_id,
            'api_key': self.api_key,
            'organization': result.get('organization'),
            'room': result.get('room')
        })
        self.cache = ScheduleCache(self.cache.cache_dir, self.device_id)
        self.set_timezone((result.get('organization') or {}).get('timezone'))
        self.save_config(self.config)

        logger.info(f'Paired as {result.get("deviceName")} (device {self.device_id})')
        return result

    # ------------------------------------------------------------------
    # Server polling
    # ------------------------------------------------------------------

    def today(self, now=None):
        return local_today(self.timezone, now).isoformat()

    def fetch_schedule(self, now=None):
        """
        Refresh today's schedule

        Falls back to the cached payload only when it is tagged with today's
        org-local date; otherwise the device runs with no schedule.
        """
        try:
            response = requests.get(
                f'{self.server_url}/api/player/schedule',
                params={'deviceId': self.device_id},
                headers=self.get_headers(),
                timeout=REQUEST_TIMEOUT
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.debug(f'Schedule fetch failed: {e}')
            self.cache.mark_degraded()
            self.schedule = self.cache.load(self.today(now))
            return self.schedule

        self.set_timezone(payload.get('timezone'))
        self.cache.store(payload)
        self.schedule = payload

        upcoming = self.engine.next_item(now or utc_now(), payload)
        if upcoming:
            logger.info(f'Next announcement: {upcoming["announcement"].get("title")} at {upcoming["timeOfDay"]}')
        return self.schedule

    def check_emergency(self):
        """Poll the emergency state; any failure reads as no emergency"""
        try:
            response = requests.get(
                f'{self.server_url}/api/player/emergency',
                params={'deviceId': self.device_id},
                headers=self.get_headers(),
                timeout=REQUEST_TIMEOUT
            )
            response.raise_for_status()
            emergency = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.debug(f'Emergency check failed: {e}')
            emergency = None

        if emergency and emergency.get('active'):
            if not self.emergency or self.emergency.get('id') != emergency.get('id'):
                logger.warning(f'Emergency broadcast {emergency.get("id")} active')
        self.emergency = emergency
        return emergency

    def send_heartbeat(self):
        """Send heartbeat to server (fire and forget)"""
        try:
            requests.post(
                f'{self.server_url}/api/player/heartbeat',
                json={'deviceId': self.device_id},
                headers=self.get_headers(),
                timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as e:
            logger.debug(f'Heartbeat failed: {e}')

    def report_playback(self, request, status):
        """Report a playback outcome (fire and forget)"""
        try:
            requests.post(
                f'{self.server_url}/api/player/log',
                json={
                    'deviceId': self.device_id,
                    'announcementId': request.announcement_id,
                    'scheduledAt': request.scheduled_at_iso,
                    'status': status
                },
                headers=self.get_headers(),
                timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as e:
            logger.debug(f'Play log failed: {e}')

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def tick(self, now=None):
        """One decision step; a schedule for another day is refetched first"""
        now = now or utc_now()
        today = self.today(now)
        if self.schedule and self.schedule.get('date') != today:
            logger.info(f'Local date is now {today}; refreshing schedule')
            self.fetch_schedule(now)
            if self.schedule and self.schedule.get('date') != today:
                self.schedule = None
        return self.engine.tick(now, self.schedule, self.emergency)

    def run(self):
        """Main run loop"""
        logger.info('Starting CareVoice Player...')

        if not self.is_paired:
            logger.error('Device is not paired. Run with a pairing code first.')
            sys.exit(1)

        last_schedule_check = 0
        last_emergency_check = 0
        last_heartbeat = 0

        while True:
            try:
                current_time = time.time()

                # PRIORITY 1: Emergency state
                if current_time - last_emergency_check >= EMERGENCY_CHECK_INTERVAL:
                    self.check_emergency()
                    last_emergency_check = current_time

                if current_time - last_schedule_check >= SCHEDULE_CHECK_INTERVAL:
                    self.fetch_schedule()
                    last_schedule_check = current_time

                if current_time - last_heartbeat >= HEARTBEAT_INTERVAL:
                    self.send_heartbeat()
                    last_heartbeat = current_time

                self.tick()

                time.sleep(TICK_INTERVAL)

            except KeyboardInterrupt:
                logger.info('Received shutdown signal')
                break
            except Exception as e:
                logger.error(f'Error in main loop: {e}')
                time.sleep(TICK_INTERVAL)

        # Cleanup
        self.engine.stop()
        logger.info('CareVoice Player stopped')


def main():
    """Main entry point: `player.py [pairing-code]`"""
    setup_logging()
    player = CareVoicePlayer()

    if not player.is_paired:
        code = sys.argv[1] if len(sys.argv) > 1 else input('Enter the 6-digit pairing code: ').strip()
        try:
            player.pair(code)
        except PairingError as e:
            logger.error(f'Pairing failed: {e}')
            sys.exit(1)

    player.run()


if __name__ == '__main__':
    main()
