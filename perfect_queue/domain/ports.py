from __future__ import annotations

from typing import List, Protocol, Sequence

from .entities import PlaylistHandle


class StreamingProvider(Protocol):
    """Port for the four provider calls behind a playlist creation.

    Every method issues exactly one authenticated call and raises ProviderError
    when the provider does not answer with a success status.
    """

    def resolve_identity(self, credential: str) -> str:
        """Return the provider user id owning the credential."""

    def fetch_recent_tracks(self, credential: str, count: int) -> List[str]:
        """Return up to count track URIs, most recently played first.

        Raises EmptyResultError when nothing was played.
        """

    def create_playlist(self, credential: str, provider_user_id: str, name: str) -> PlaylistHandle:
        """Create a private playlist for the user."""

    def populate_playlist(self, credential: str, playlist_id: str, track_references: Sequence[str]) -> None:
        """Append the tracks to the playlist, preserving order."""


class DuplicateRequestGuard(Protocol):
    """Server-side claim store keyed by request fingerprint."""

    def try_acquire(self, fingerprint: str) -> bool:
        """Atomically claim the fingerprint. False means it was already claimed."""

    def release(self, fingerprint: str) -> None:
        """Drop a claim so the fingerprint can be acquired again."""


class DispatchTracker(Protocol):
    """Client-side record of credentials already sent to the server."""

    def has_dispatched(self, credential: str) -> bool:
        ...

    def mark_dispatched(self, credential: str) -> None:
        ...


class CredentialExchange(Protocol):
    """Turns an authorization code into a bearer token."""

    def exchange(self, code: str) -> str:
        ...
