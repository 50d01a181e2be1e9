import os
import json
from dataclasses import dataclass
from typing import Dict, Any, Optional
from pathlib import Path

from dotenv import dotenv_values


DEFAULT_TRACK_COUNT = 30


class ConfigError(Exception):
    """Configuration error."""
    pass


@dataclass(frozen=True)
class ServerSettings:
    """Settings for the playlist-creation server."""

    client_id: Optional[str]
    client_secret: Optional[str]
    redirect_uri: Optional[str]
    post_auth_redirect: str = '/'
    requests_timeout: float = 5.0
    guard_ttl_seconds: Optional[float] = 86400.0
    guard_max_entries: Optional[int] = 10000
    release_claim_on_failure: bool = False


class SecretManager:
    """Manages application secrets, server settings and client-side state files."""

    def __init__(self, config_dir: Optional[str] = None):
        """Initialize secret manager."""
        self.config_dir = Path(config_dir) if config_dir else Path.home() / '.perfect-queue'
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.env_file = self.config_dir / '.env'
        self.preferences_file = self.config_dir / 'preferences.json'
        self.dispatch_file = self.config_dir / 'dispatched.json'

    def get_spotify_scopes(self) -> list:
        """Get minimal required Spotify scopes."""
        return [
            'user-read-recently-played',  # Read listening history
            'playlist-modify-public',     # Create/modify public playlists
            'playlist-modify-private',    # Create/modify private playlists
        ]

    def get_spotify_scope_string(self) -> str:
        """Get Spotify scopes as space-separated string."""
        return ' '.join(self.get_spotify_scopes())

    def load_env_vars(self) -> Dict[str, str]:
        """Load variables from the .env file, overridden by the process environment."""
        env_vars = {}

        if self.env_file.exists():
            try:
                env_vars = {k: v for k, v in dotenv_values(self.env_file).items() if v is not None}
            except OSError as e:
                raise ConfigError(f"Failed to load .env file {self.env_file}: {e}")

        for key, value in os.environ.items():
            if key.startswith('SPOTIFY_') or key.startswith('PERFECT_QUEUE_'):
                env_vars[key] = value

        return env_vars

    def get_server_settings(self) -> ServerSettings:
        """Build server settings. Spotify credentials may be missing here;
        the endpoints that need them report the misconfiguration."""
        env_vars = self.load_env_vars()

        try:
            timeout = float(env_vars.get('PERFECT_QUEUE_REQUESTS_TIMEOUT', '5'))
            ttl = float(env_vars.get('PERFECT_QUEUE_GUARD_TTL_SECONDS', '86400'))
            max_entries = int(env_vars.get('PERFECT_QUEUE_GUARD_MAX_ENTRIES', '10000'))
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}")

        return ServerSettings(
            client_id=env_vars.get('SPOTIFY_CLIENT_ID') or None,
            client_secret=env_vars.get('SPOTIFY_CLIENT_SECRET') or None,
            redirect_uri=env_vars.get('SPOTIFY_REDIRECT_URI') or None,
            post_auth_redirect=env_vars.get('PERFECT_QUEUE_POST_AUTH_REDIRECT') or '/',
            requests_timeout=timeout,
            guard_ttl_seconds=ttl if ttl > 0 else None,
            guard_max_entries=max_entries if max_entries > 0 else None,
            release_claim_on_failure=env_vars.get('PERFECT_QUEUE_RELEASE_CLAIM_ON_FAILURE', '0') == '1',
        )

    def load_preferences(self) -> Dict[str, Any]:
        """Load remembered form values (number of songs, playlist name)."""
        if not self.preferences_file.exists():
            return {'number_of_songs': DEFAULT_TRACK_COUNT, 'playlist_name': ''}

        try:
            with open(self.preferences_file, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Failed to load preferences from {self.preferences_file}: {e}")

        return {
            'number_of_songs': data.get('number_of_songs', DEFAULT_TRACK_COUNT),
            'playlist_name': data.get('playlist_name', ''),
        }

    def save_preferences(self, number_of_songs: int, playlist_name: str) -> None:
        """Remember form values across the authorization redirect."""
        try:
            with open(self.preferences_file, 'w') as f:
                json.dump({
                    'number_of_songs': number_of_songs,
                    'playlist_name': playlist_name,
                }, f, indent=2, ensure_ascii=False)
        except IOError as e:
            raise ConfigError(f"Failed to save preferences to {self.preferences_file}: {e}")

_secret_manager: Optional[SecretManager] = None


def get_secret_manager() -> SecretManager:
    """Get global secret manager instance."""
    global _secret_manager
    if _secret_manager is None:
        _secret_manager = SecretManager()
    return _secret_manager


def setup_config(config_dir: Optional[str] = None) -> SecretManager:
    """Setup configuration with custom directory."""
    global _secret_manager
    _secret_manager = SecretManager(config_dir)
    return _secret_manager
