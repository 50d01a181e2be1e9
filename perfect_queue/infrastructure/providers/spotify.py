import logging
from typing import Any, Callable, Dict, List, Sequence, TypeVar

import requests
import spotipy
from spotipy.exceptions import SpotifyException

from perfect_queue.domain.entities import PlaylistHandle
from perfect_queue.domain.errors import EmptyResultError, ProviderError
from perfect_queue.domain.ports import StreamingProvider

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Spotify rejects recently-played requests with limit > 50
MAX_RECENT_LIMIT = 50


class SpotifyClient(StreamingProvider):
    """Thin wrapper over spotipy for the four calls of a playlist creation.

    The client is stateless with respect to credentials: every call receives the
    bearer token it should run with. Retries are disabled, a failing call
    surfaces immediately as ProviderError.
    """

    def __init__(self, requests_timeout: float = 5.0):
        """Initialize Spotify client.

        Args:
            requests_timeout: Transport timeout in seconds for each provider call
        """
        self.requests_timeout = requests_timeout

    def _client_for(self, credential: str) -> spotipy.Spotify:
        """Build a spotipy client bound to the given bearer token."""
        return spotipy.Spotify(
            auth=credential,
            requests_timeout=self.requests_timeout,
            retries=0,
            status_retries=0,
        )

    def _call(self, operation: str, func: Callable[[], T]) -> T:
        """Run one provider call, mapping failures to ProviderError."""
        try:
            return func()
        except SpotifyException as e:
            body = e.msg if isinstance(e.msg, str) else str(e.msg)
            logger.error(f"Spotify {operation} failed: status={e.http_status} body={body}")
            raise ProviderError(e.http_status, body, message=f"Spotify {operation} failed") from e
        except requests.exceptions.RequestException as e:
            status = getattr(getattr(e, 'response', None), 'status_code', None)
            logger.error(f"Spotify {operation} transport error: {e}")
            raise ProviderError(status, str(e), message=f"Spotify {operation} failed") from e

    def resolve_identity(self, credential: str) -> str:
        """Return the Spotify user id of the token owner."""
        client = self._client_for(credential)
        user = self._call('resolve_identity', client.current_user)

        user_id = (user or {}).get('id')
        if not user_id:
            raise ProviderError(200, str(user), message="Spotify returned no user id")

        logger.info(f"Resolved Spotify user: {user_id}")
        return user_id

    def fetch_recent_tracks(self, credential: str, count: int) -> List[str]:
        """Fetch up to count recently played track URIs, most recent first.

        Args:
            credential: Bearer token
            count: Number of tracks to look back

        Returns:
            Ordered list of track URIs

        Raises:
            EmptyResultError: if the user has no playable recent tracks
        """
        limit = count
        if limit > MAX_RECENT_LIMIT:
            logger.warning(f"Requested {count} recent tracks, Spotify caps at {MAX_RECENT_LIMIT}")
            limit = MAX_RECENT_LIMIT

        client = self._client_for(credential)
        response = self._call(
            'fetch_recent_tracks',
            lambda: client.current_user_recently_played(limit=limit)
        )

        track_uris = self._extract_track_uris(response)
        logger.info(f"Fetched {len(track_uris)} recently played tracks")

        if not track_uris:
            raise EmptyResultError("No recent tracks found")
        return track_uris

    @staticmethod
    def _extract_track_uris(response: Dict[str, Any]) -> List[str]:
        uris = []
        for item in (response or {}).get('items', []):
            track = item.get('track') or {}
            uri = track.get('uri')
            if uri:
                uris.append(uri)
        return uris

    def create_playlist(self, credential: str, provider_user_id: str, name: str) -> PlaylistHandle:
        """Create a private playlist owned by provider_user_id."""
        client = self._client_for(credential)
        result = self._call(
            'create_playlist',
            lambda: client.user_playlist_create(provider_user_id, name, public=False)
        )

        playlist_id = (result or {}).get('id')
        if not playlist_id:
            raise ProviderError(201, str(result), message="Spotify returned no playlist id")

        logger.info(f"Created playlist {playlist_id} for user {provider_user_id}")
        return PlaylistHandle(id=playlist_id, name=result.get('name', name))

    def populate_playlist(self, credential: str, playlist_id: str, track_references: Sequence[str]) -> None:
        """Add the tracks to the playlist in the given order."""
        client = self._client_for(credential)
        self._call(
            'populate_playlist',
            lambda: client.playlist_add_items(playlist_id, list(track_references))
        )
        logger.info(f"Added {len(track_references)} tracks to playlist {playlist_id}")
