"""End-to-end flow: CLI-side dispatcher -> Flask server -> orchestrator -> Spotify client.

Only spotipy.Spotify is faked; requests.post from the dispatcher is routed into
the Flask test client.
"""

import shutil
import tempfile
import threading
from unittest.mock import Mock, patch

from perfect_queue.application.dispatch import DispatchLock, FileDispatchTracker
from perfect_queue.application.idempotency import InMemoryRequestGuard
from perfect_queue.application.orchestrator import PlaylistOrchestrator
from perfect_queue.crosscutting.config import SecretManager, ServerSettings
from perfect_queue.domain.entities import OutcomeKind
from perfect_queue.infrastructure.providers.spotify import SpotifyClient
from perfect_queue.interfaces.client import PlaylistDispatcher
from perfect_queue.interfaces.http import HTTPServer


class FakeSpotify:
    """In-memory stand-in for a spotipy.Spotify session."""

    def __init__(self, user_id='user42', recent=None):
        self.user_id = user_id
        self.recent = recent if recent is not None else [f'spotify:track:{i:02d}' for i in range(12)]
        self.playlists = {}
        self.calls = []
        self.lock = threading.Lock()

    def session(self, **kwargs):
        return self

    def current_user(self):
        self.calls.append('current_user')
        return {'id': self.user_id}

    def current_user_recently_played(self, limit=50):
        self.calls.append('current_user_recently_played')
        return {'items': [{'track': {'uri': uri}} for uri in self.recent[:limit]]}

    def user_playlist_create(self, user, name, public=True):
        self.calls.append('user_playlist_create')
        with self.lock:
            playlist_id = f'pl_{99 + len(self.playlists)}'
            self.playlists[playlist_id] = {'name': name, 'public': public, 'owner': user, 'tracks': []}
        return {'id': playlist_id, 'name': name}

    def playlist_add_items(self, playlist_id, items):
        self.calls.append('playlist_add_items')
        self.playlists[playlist_id]['tracks'].extend(items)
        return {'snapshot_id': 'snap'}


class TestCreatePlaylistEndToEnd:
    """Full round trip with a fake provider behind the real stack."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.fake = FakeSpotify()
        self.spotify_patcher = patch(
            'perfect_queue.infrastructure.providers.spotify.spotipy.Spotify',
            side_effect=self.fake.session,
        )
        self.spotify_patcher.start()

        self.server = HTTPServer(
            settings=ServerSettings(client_id='cid', client_secret='secret',
                                    redirect_uri='http://localhost:3000/api/callback'),
            secret_manager=SecretManager(self.temp_dir),
            orchestrator=PlaylistOrchestrator(SpotifyClient(), InMemoryRequestGuard()),
        )
        self.flask_client = self.server.app.test_client()

        self.requests_patcher = patch('perfect_queue.interfaces.client.requests.post',
                                      side_effect=self._route_to_flask)
        self.requests_patcher.start()

    def teardown_method(self):
        """Clean up test fixtures."""
        self.requests_patcher.stop()
        self.spotify_patcher.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _route_to_flask(self, url, json=None, timeout=None):
        path = url.split('localhost:3000', 1)[1]
        flask_response = self.flask_client.post(path, json=json)
        response = Mock()
        response.status_code = flask_response.status_code
        response.json.return_value = flask_response.get_json()
        return response

    def make_dispatcher(self, name='dispatched.json'):
        tracker = FileDispatchTracker(f'{self.temp_dir}/{name}')
        return PlaylistDispatcher('http://localhost:3000', DispatchLock(tracker))

    def test_gym_mix_scenario(self):
        outcome = self.make_dispatcher().dispatch('tok_abc', 30, 'Gym Mix')

        assert outcome.kind == OutcomeKind.SUCCESS
        assert outcome.text == 'Playlist created successfully!'
        assert outcome.status_code == 200
        assert self.fake.playlists['pl_99'] == {
            'name': 'Gym Mix',
            'public': False,
            'owner': 'user42',
            'tracks': [f'spotify:track:{i:02d}' for i in range(12)],
        }
        assert self.fake.calls == [
            'current_user', 'current_user_recently_played', 'user_playlist_create', 'playlist_add_items'
        ]

    def test_empty_history_scenario(self):
        self.fake.recent = []

        outcome = self.make_dispatcher().dispatch('tok_abc', 30, 'Gym Mix')

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.status_code == 400
        assert self.fake.playlists == {}
        assert 'user_playlist_create' not in self.fake.calls

    def test_rerender_with_same_token_sends_once(self):
        dispatcher = self.make_dispatcher()

        dispatcher.dispatch('tok_abc', 30, 'Gym Mix')
        second = dispatcher.dispatch('tok_abc', 30, 'Gym Mix')

        assert second is None
        assert len(self.fake.playlists) == 1

    def test_new_token_same_name_is_rejected_by_server(self):
        self.make_dispatcher().dispatch('tok_abc', 30, 'Road Trip')
        self.fake.calls.clear()

        outcome = self.make_dispatcher('other_device.json').dispatch('tok_def', 30, 'Road Trip')

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.status_code == 400
        assert outcome.text == 'Playlist has already been created'
        assert self.fake.calls == ['current_user']
        assert len(self.fake.playlists) == 1

    def test_concurrent_requests_create_one_playlist(self):
        payload = {'accessToken': 'tok_abc', 'numberOfSongs': 30, 'playlistName': 'Gym Mix'}
        statuses = []
        statuses_lock = threading.Lock()
        barrier = threading.Barrier(8)

        def fire():
            client = self.server.app.test_client()
            barrier.wait()
            status = client.post('/api/create-playlist', json=payload).status_code
            with statuses_lock:
                statuses.append(status)

        threads = [threading.Thread(target=fire) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(statuses) == [200] + [400] * 7
        assert len(self.fake.playlists) == 1
