import logging
from typing import Optional
from urllib.parse import urlencode

import requests

from perfect_queue.domain.errors import CredentialExchangeError
from perfect_queue.domain.ports import CredentialExchange

logger = logging.getLogger(__name__)

AUTHORIZE_URL = 'https://accounts.spotify.com/authorize'
TOKEN_URL = 'https://accounts.spotify.com/api/token'


class SpotifyCredentialExchange(CredentialExchange):
    """Authorization-code flow against the Spotify accounts service."""

    def __init__(self, client_id: Optional[str], client_secret: Optional[str],
                 redirect_uri: Optional[str], timeout: float = 5.0):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    def build_authorize_url(self, scopes: str, show_dialog: bool = True) -> str:
        """Build the URL the user is sent to for granting access."""
        if not self.client_id or not self.redirect_uri:
            raise CredentialExchangeError("Missing Spotify client ID or redirect URI")

        params = {
            'response_type': 'code',
            'client_id': self.client_id,
            'scope': scopes,
            'redirect_uri': self.redirect_uri,
        }
        if show_dialog:
            params['show_dialog'] = 'true'
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    def exchange(self, code: str) -> str:
        """Exchange an authorization code for an access token."""
        if not self.client_id or not self.client_secret or not self.redirect_uri:
            raise CredentialExchangeError("Spotify client credentials not configured")

        data = {
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': self.redirect_uri,
            'client_id': self.client_id,
            'client_secret': self.client_secret,
        }

        try:
            response = requests.post(TOKEN_URL, data=data, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Token exchange transport error: {e}")
            raise CredentialExchangeError(f"Token exchange failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Token exchange failed: {response.status_code} - {response.text}")
            raise CredentialExchangeError(f"Token exchange failed with status {response.status_code}")

        access_token = response.json().get('access_token')
        if not access_token:
            raise CredentialExchangeError("Token response did not contain an access token")
        return access_token
