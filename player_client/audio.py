"""
Audio output for the CareVoice player
Text-to-speech via espeak-ng and audio files via mpv, each run as a subprocess
"""
import logging
import subprocess

logger = logging.getLogger(__name__)

TTS_COMMAND = 'espeak-ng'
PLAYER_COMMAND = 'mpv'


class AudioJob:
    """One in-flight playback; poll() is None while running, then True/False"""

    def __init__(self, process=None, error=None):
        self.process = process
        self.error = error

    def poll(self):
        if self.process is None:
            return False
        returncode = self.process.poll()
        if returncode is None:
            return None
        if returncode != 0:
            self.error = f'exit code {returncode}'
            logger.error(f'Audio process {self.process.args[0]} failed: {self.error}')
        return returncode == 0

    def stop(self):
        if self.process is not None and self.process.poll() is None:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()


class AudioOutput:
    """Starts announcements on the local audio device"""

    def __init__(self, tts_command=TTS_COMMAND, player_command=PLAYER_COMMAND):
        self.tts_command = tts_command
        self.player_command = player_command

    def _start(self, cmd):
        try:
            process = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            logger.error(f'Failed to start {cmd[0]}: {e}')
            return AudioJob(error=str(e))
        return AudioJob(process)

    def speak(self, text, language='en-US', voice=None):
        """Speak text; voice overrides the language-derived espeak voice"""
        espeak_voice = voice or language.lower()
        logger.info(f'Speaking ({espeak_voice}): {text[:60]}')
        return self._start([self.tts_command, '-v', espeak_voice, text])

    def play_file(self, url):
        logger.info(f'Playing audio: {url}')
        return self._start([self.player_command, '--no-video', '--really-quiet', url])

    def play(self, announcement):
        """Dispatch on the announcement's TTS/MP3 type"""
        if announcement.get('type') == 'MP3':
            return self.play_file(announcement['audioUrl'])
        return self.speak(announcement.get('text') or '', announcement.get('language') or 'en-US',
                          announcement.get('voice'))
