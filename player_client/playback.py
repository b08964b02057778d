"""
Playback decision engine
Decides, once per tick, whether to start an emergency broadcast or a due schedule item
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Callable, Dict, Any, List

from utils.clock import local_now, slot_datetime_utc, to_naive_utc

logger = logging.getLogger(__name__)

PLAYED = 'PLAYED'
FAILED = 'FAILED'


@dataclass
class PlaybackRequest:
    """What is being played and the slot it is reported against"""
    kind: str  # 'schedule' or 'emergency'
    source_id: int  # schedule item id or broadcast id
    announcement: Dict[str, Any]
    scheduled_at: datetime  # aware UTC

    @property
    def announcement_id(self) -> int:
        return self.announcement['id']

    @property
    def scheduled_at_iso(self) -> str:
        return to_naive_utc(self.scheduled_at).isoformat(timespec='milliseconds') + 'Z'


class PlaybackEngine:
    """
    Single-threaded decision loop for one device session

    At most one playback is in flight. Ordinary schedule items never preempt
    it; an emergency waits for it to finish and then takes priority over any
    schedule item due at the same time.
    """

    def __init__(self, audio, timezone_name: str,
                 report: Optional[Callable[[PlaybackRequest, str], None]] = None):
        self.audio = audio
        self.timezone_name = timezone_name
        self.report = report

        self.played_keys = set()
        self.played_date = None
        # Broadcast ids played this session; a broadcast never repeats on the same device
        self.emergency_played = set()

        self.current_job = None
        self.current_request: Optional[PlaybackRequest] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def is_playing(self) -> bool:
        """True while a playback runs; collects and reports the outcome once it ends"""
        if self.current_job is None:
            return False

        outcome = self.current_job.poll()
        if outcome is None:
            return True

        self._finish(PLAYED if outcome else FAILED)
        return False

    def _finish(self, status: str):
        request = self.current_request
        self.current_job = None
        self.current_request = None

        if status == PLAYED:
            logger.info(f'Finished {request.kind} announcement {request.announcement_id}')
        else:
            logger.warning(f'Playback failed for {request.kind} announcement {request.announcement_id}')

        if self.report is not None:
            try:
                self.report(request, status)
            except Exception as e:
                logger.debug(f'Playback report failed: {e}')

    def _roll_date(self, today: str):
        if self.played_date != today:
            if self.played_date is not None:
                logger.info(f'New day {today}; clearing played slots')
            self.played_keys.clear()
            self.played_date = today

    @staticmethod
    def dedup_key(day: str, item_id: int) -> str:
        return f'{day}-{item_id}'

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def tick(self, now: datetime, schedule: Optional[Dict[str, Any]],
             emergency: Optional[Dict[str, Any]]) -> Optional[PlaybackRequest]:
        """
        Start at most one playback

        Args:
            now: Current instant (aware, or naive UTC)
            schedule: Player schedule payload ({date, items}) or None
            emergency: Emergency poll payload ({active, id, announcement}) or None

        Returns:
            The PlaybackRequest started on this tick, or None
        """
        local = local_now(self.timezone_name, now)
        today = local.date().isoformat()
        self._roll_date(today)

        if self.is_playing():
            return None

        if emergency and emergency.get('active') and emergency.get('id') not in self.emergency_played:
            self.emergency_played.add(emergency['id'])
            return self._start(PlaybackRequest(
                kind='emergency',
                source_id=emergency['id'],
                announcement=emergency['announcement'],
                scheduled_at=local.astimezone(timezone.utc)
            ))

        for item in self.due_items(local, schedule):
            key = self.dedup_key(today, item['id'])
            # Marked before starting so a failed slot is not retried
            self.played_keys.add(key)
            return self._start(PlaybackRequest(
                kind='schedule',
                source_id=item['id'],
                announcement=item['announcement'],
                scheduled_at=slot_datetime_utc(local.date(), item['timeOfDay'], self.timezone_name)
            ))

        return None

    def due_items(self, local: datetime, schedule: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Items whose time equals the current minute and that have not played today"""
        today = local.date().isoformat()
        if not schedule or schedule.get('date') != today:
            return []
        hhmm = local.strftime('%H:%M')
        return [
            item for item in schedule.get('items', [])
            if item['timeOfDay'] == hhmm and self.dedup_key(today, item['id']) not in self.played_keys
        ]

    def next_item(self, now: datetime, schedule: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Earliest item later than the current minute today; no wraparound to tomorrow"""
        local = local_now(self.timezone_name, now)
        if not schedule or schedule.get('date') != local.date().isoformat():
            return None
        hhmm = local.strftime('%H:%M')
        for item in schedule.get('items', []):
            if item['timeOfDay'] > hhmm:
                return item
        return None

    def _start(self, request: PlaybackRequest) -> PlaybackRequest:
        logger.info(f'Starting {request.kind} announcement {request.announcement_id} '
                    f'({request.announcement.get("title")})')
        self.current_request = request
        try:
            self.current_job = self.audio.play(request.announcement)
        except Exception as e:
            logger.error(f'Audio output error: {e}')
            self.current_job = None

        if self.current_job is None:
            self.current_job = _FailedJob()
        return request

    def stop(self):
        if self.current_job is not None:
            self.current_job.stop()
            self.current_job = None
            self.current_request = None


class _FailedJob:
    """Stand-in for an audio job that could not be started"""

    def poll(self):
        return False

    def stop(self):
        pass
