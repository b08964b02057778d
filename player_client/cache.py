"""
Offline schedule cache for the CareVoice player
Keeps the last good schedule payload on disk, tagged with the org-local date it is for
"""
import os
import json
import logging
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)


class Connectivity(Enum):
    HEALTHY = 'healthy'
    DEGRADED = 'degraded'


class ScheduleCache:
    """Per-device schedule cache; a payload is only ever served for its own date"""

    def __init__(self, cache_dir, device_id):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.device_id = device_id
        self.connectivity = Connectivity.HEALTHY

    @property
    def path(self):
        return self.cache_dir / f'schedule-{self.device_id}.json'

    @property
    def is_degraded(self):
        return self.connectivity == Connectivity.DEGRADED

    def store(self, payload):
        """Overwrite the cache with a freshly fetched payload and mark connectivity healthy"""
        if self.connectivity != Connectivity.HEALTHY:
            logger.info('Server reachable again')
        self.connectivity = Connectivity.HEALTHY

        tmp_path = self.path.with_suffix('.tmp')
        try:
            with open(tmp_path, 'w') as f:
                json.dump(payload, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f'Failed to write schedule cache: {e}')

    def mark_degraded(self):
        if self.connectivity != Connectivity.DEGRADED:
            logger.warning('Server unreachable, running from cached schedule')
        self.connectivity = Connectivity.DEGRADED

    def load(self, today):
        """
        Cached payload for today's org-local date, or None

        Args:
            today (str): Org-local date as YYYY-MM-DD

        A payload tagged with any other date is deleted rather than served.
        """
        try:
            with open(self.path, 'r') as f:
                payload = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f'Unreadable schedule cache: {e}')
            self.clear()
            return None

        if payload.get('date') != today:
            logger.info(f'Discarding cached schedule for {payload.get("date")} (today is {today})')
            self.clear()
            return None

        return payload

    def clear(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
