"""
Player client tests; HTTP is stubbed with unittest.mock
"""
import json
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
import requests

from player_client.player import CareVoicePlayer, PairingError
from test_playback import FakeAudio, NINE_AM, item, schedule


def response(status_code=200, body=None):
    mock = Mock()
    mock.status_code = status_code
    mock.json.return_value = body if body is not None else {}
    mock.text = json.dumps(body or {})
    if status_code >= 400:
        mock.raise_for_status.side_effect = requests.HTTPError(f'{status_code} error')
    else:
        mock.raise_for_status.return_value = None
    return mock


@pytest.fixture
def audio():
    return FakeAudio()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({
        'server_url': 'http://carevoice.test/',
        'device_id': 7,
        'api_key': 'secret',
        'timezone': 'America/New_York',
        'cache_dir': str(tmp_path / 'cache')
    }))
    return path


@pytest.fixture
def player(config_file, audio):
    return CareVoicePlayer(config_file=str(config_file), audio=audio)


def test_missing_config_creates_unpaired_default(tmp_path):
    config_path = tmp_path / 'config.json'
    player = CareVoicePlayer(config_file=str(config_path), audio=FakeAudio())

    assert not player.is_paired
    assert json.loads(config_path.read_text())['device_id'] is None


def test_pair_persists_credentials_and_timezone(tmp_path, audio):
    config_path = tmp_path / 'config.json'
    config_path.write_text(json.dumps({'server_url': 'http://carevoice.test', 'cache_dir': str(tmp_path)}))
    player = CareVoicePlayer(config_file=str(config_path), audio=audio)

    body = {'deviceId': 3, 'deviceName': 'Lobby TV', 'apiKey': 'k3y', 'room': None,
            'organization': {'id': 1, 'name': 'Sunrise', 'timezone': 'America/Chicago'}}
    with patch('player_client.player.requests.post', return_value=response(200, body)) as post:
        player.pair('123456')

    post.assert_called_once()
    assert post.call_args.kwargs['json'] == {'pairingCode': '123456'}
    saved = json.loads(config_path.read_text())
    assert (saved['device_id'], saved['api_key'], saved['timezone']) == (3, 'k3y', 'America/Chicago')
    assert player.engine.timezone_name == 'America/Chicago'


def test_pair_errors_keep_status(tmp_path, audio):
    player = CareVoicePlayer(config_file=str(tmp_path / 'config.json'), audio=audio)

    with patch('player_client.player.requests.post', return_value=response(410, {'error': 'Pairing code expired'})):
        with pytest.raises(PairingError) as excinfo:
            player.pair('123456')
    assert excinfo.value.status_code == 410

    with patch('player_client.player.requests.post', side_effect=requests.ConnectionError('down')):
        with pytest.raises(PairingError):
            player.pair('123456')


def test_requests_carry_device_key_and_timeout(player):
    with patch('player_client.player.requests.get', return_value=response(200, schedule())) as get:
        player.fetch_schedule(NINE_AM)

    kwargs = get.call_args.kwargs
    assert get.call_args.args[0] == 'http://carevoice.test/api/player/schedule'
    assert kwargs['headers'] == {'X-Device-Key': 'secret'}
    assert kwargs['params'] == {'deviceId': 7}
    assert kwargs['timeout'] == 10


def test_failed_fetch_falls_back_to_todays_cache(player):
    today = schedule(item(1, '09:00'))
    with patch('player_client.player.requests.get', return_value=response(200, today)):
        player.fetch_schedule(NINE_AM)

    with patch('player_client.player.requests.get', side_effect=requests.Timeout('slow')):
        assert player.fetch_schedule(NINE_AM) == today
    assert player.cache.is_degraded


def test_failed_fetch_never_uses_yesterdays_cache(player, audio):
    yesterday = schedule(item(1, '09:00'), day='2025-06-02')
    with patch('player_client.player.requests.get', return_value=response(200, yesterday)):
        player.fetch_schedule(NINE_AM)

    with patch('player_client.player.requests.get', side_effect=requests.ConnectionError('down')):
        assert player.fetch_schedule(NINE_AM) is None

    player.tick(NINE_AM)
    assert audio.played == []


def test_emergency_poll_failure_reads_as_no_emergency(player):
    with patch('player_client.player.requests.get', return_value=response(500)):
        assert player.check_emergency() is None
    with patch('player_client.player.requests.get', side_effect=requests.ConnectionError('down')):
        assert player.check_emergency() is None
    assert player.emergency is None


def test_heartbeat_and_log_failures_are_swallowed(player, audio):
    with patch('player_client.player.requests.post', side_effect=requests.ConnectionError('down')):
        player.send_heartbeat()

        player.schedule = schedule(item(1, '09:00'))
        player.tick(NINE_AM)
        audio.finish()
        assert player.tick(NINE_AM.replace(second=30)) is None


def test_playback_outcome_is_reported(player, audio):
    player.schedule = schedule(item(1, '09:00'))
    player.tick(NINE_AM)
    audio.finish()

    with patch('player_client.player.requests.post', return_value=response(200, {'success': True})) as post:
        player.tick(datetime(2025, 6, 3, 13, 0, 5, tzinfo=timezone.utc))

    assert post.call_args.args[0] == 'http://carevoice.test/api/player/log'
    assert post.call_args.kwargs['json'] == {
        'deviceId': 7, 'announcementId': 10,
        'scheduledAt': '2025-06-03T13:00:00.000Z', 'status': 'PLAYED'
    }


def test_emergency_from_poll_plays(player, audio):
    body = {'active': True, 'id': 9, 'announcement': {'id': 99, 'title': 'Evacuate', 'type': 'TTS',
                                                      'text': 'Evacuate', 'language': 'en-US'}}
    with patch('player_client.player.requests.get', return_value=response(200, body)):
        player.check_emergency()

    assert player.tick(NINE_AM).kind == 'emergency'
    assert audio.played == [99]


def test_new_local_day_refetches_before_first_slot(player):
    player.schedule = schedule(item(2, '23:59'), day='2025-06-02')
    midnight = datetime(2025, 6, 3, 4, 0, 0, tzinfo=timezone.utc)  # 00:00 in New York

    with patch('player_client.player.requests.get', return_value=response(200, schedule(item(1, '00:00')))) as get:
        started = player.tick(midnight)

    get.assert_called_once()
    assert started.source_id == 1
    assert player.schedule['date'] == '2025-06-03'


def test_new_local_day_without_server_runs_empty(player, audio):
    player.schedule = schedule(item(1, '00:00'), day='2025-06-02')
    midnight = datetime(2025, 6, 3, 4, 0, 0, tzinfo=timezone.utc)

    with patch('player_client.player.requests.get', side_effect=requests.ConnectionError('down')):
        assert player.tick(midnight) is None

    assert player.schedule is None
    assert audio.played == []
