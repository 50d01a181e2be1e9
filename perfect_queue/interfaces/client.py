import logging
from typing import Optional
from urllib.parse import parse_qs, urlparse

import requests

from perfect_queue.application.dispatch import DispatchLock
from perfect_queue.domain.entities import OutcomeKind, OutcomeMessage

logger = logging.getLogger(__name__)

CLIENT_FAILURE_MESSAGE = "Failed to create playlist. Please try again."


def extract_access_token(value: str) -> Optional[str]:
    """Pull access_token out of a redirected URL, or accept a bare token."""
    value = (value or '').strip()
    if not value:
        return None
    if '://' not in value and '?' not in value and '=' not in value:
        return value

    query = urlparse(value).query or value.lstrip('?')
    tokens = parse_qs(query).get('access_token')
    return tokens[0] if tokens else None


def validate_form(number_of_songs: int, playlist_name: str) -> Optional[OutcomeMessage]:
    """Return the message for an unusable form, or None when it can be sent."""
    if not playlist_name or not playlist_name.strip():
        return OutcomeMessage("Please enter a playlist name.", OutcomeKind.ERROR, status_code=400)
    if isinstance(number_of_songs, bool) or not isinstance(number_of_songs, int) or number_of_songs <= 0:
        return OutcomeMessage("Please enter a valid number of songs.", OutcomeKind.ERROR, status_code=400)
    return None


class PlaylistDispatcher:
    """Calling side of playlist creation: one request per credential."""

    def __init__(self, base_url: str, lock: DispatchLock, timeout: float = 30.0):
        """Initialize dispatcher.

        Args:
            base_url: Root URL of the Perfect Queue server
            lock: Dispatch lock remembering credentials already sent
            timeout: Timeout in seconds for the create-playlist request
        """
        self.base_url = base_url.rstrip('/')
        self.lock = lock
        self.timeout = timeout

    def dispatch(self, credential: str, number_of_songs: int, playlist_name: str) -> Optional[OutcomeMessage]:
        """Ask the server to create the playlist.

        Returns None when this credential was already dispatched, otherwise the
        message to show the user.
        """
        if not credential:
            return OutcomeMessage("Access token not found. Please authenticate with Spotify.",
                                  OutcomeKind.ERROR, status_code=400)
        problem = validate_form(number_of_songs, playlist_name)
        if problem is not None:
            return problem

        # Mark before sending so a rapid second invocation sees the claim
        if not self.lock.claim(credential):
            return None

        return self._send(credential, number_of_songs, playlist_name.strip())

    def _send(self, credential: str, number_of_songs: int, playlist_name: str) -> OutcomeMessage:
        logger.info(f"Requesting playlist '{playlist_name}' with {number_of_songs} songs")
        try:
            response = requests.post(
                f"{self.base_url}/api/create-playlist",
                json={
                    'accessToken': credential,
                    'numberOfSongs': number_of_songs,
                    'playlistName': playlist_name,
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Create playlist request failed: {e}")
            return OutcomeMessage(CLIENT_FAILURE_MESSAGE, OutcomeKind.ERROR, status_code=500)

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code == 200:
            return OutcomeMessage(body.get('message') or "Playlist created successfully!",
                                  OutcomeKind.SUCCESS, status_code=200)

        logger.error(f"Create playlist returned {response.status_code}: {body}")
        return OutcomeMessage(body.get('message') or CLIENT_FAILURE_MESSAGE,
                              OutcomeKind.ERROR, status_code=response.status_code)
