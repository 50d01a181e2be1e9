from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ValidationError


SUCCESS_MESSAGE = "Playlist created successfully!"
MISSING_DATA_MESSAGE = "Missing required data: access token, number of songs, or playlist name"
DUPLICATE_MESSAGE = "Playlist has already been created"
NO_TRACKS_MESSAGE = "No recent tracks found"
FAILURE_MESSAGE = "Failed to create playlist"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class OrchestrationState(str, Enum):
    """States of a single playlist-creation run, in visiting order."""

    IDLE = "idle"
    IDENTITY_RESOLVED = "identity_resolved"
    GUARD_ACQUIRED = "guard_acquired"
    TRACKS_FETCHED = "tracks_fetched"
    PLAYLIST_CREATED = "playlist_created"
    POPULATED = "populated"
    FAILED = "failed"


class FailureReason(str, Enum):
    VALIDATION_ERROR = "validation_error"
    AUTH_ERROR = "auth_error"
    DUPLICATE_REQUEST = "duplicate_request"
    NO_TRACKS_FOUND = "no_tracks_found"
    PROVIDER_FAILURE = "provider_failure"


# Status code and user-facing text per failure reason
FAILURE_RESPONSES = {
    FailureReason.VALIDATION_ERROR: (400, MISSING_DATA_MESSAGE),
    FailureReason.DUPLICATE_REQUEST: (400, DUPLICATE_MESSAGE),
    FailureReason.NO_TRACKS_FOUND: (400, NO_TRACKS_MESSAGE),
    FailureReason.AUTH_ERROR: (500, FAILURE_MESSAGE),
    FailureReason.PROVIDER_FAILURE: (500, FAILURE_MESSAGE),
}


def _parse_track_count(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    return None


@dataclass(frozen=True)
class CreationRequest:
    """One user action asking for a playlist of recently played tracks."""

    credential: str
    desired_track_count: int
    playlist_name: str

    def validate(self) -> None:
        """Raise ValidationError unless all three fields are present and sane."""
        if not isinstance(self.credential, str) or not self.credential.strip():
            raise ValidationError("credential is required")
        count = self.desired_track_count
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise ValidationError("desired_track_count must be a positive integer")
        if not isinstance(self.playlist_name, str) or not self.playlist_name.strip():
            raise ValidationError("playlist_name must be a non-empty string")

    @classmethod
    def from_payload(cls, payload: Any) -> "CreationRequest":
        """Build a validated request from the inbound JSON body.

        Expects ``accessToken``, ``numberOfSongs`` and ``playlistName``.
        """
        if not isinstance(payload, dict):
            raise ValidationError("request body must be a JSON object")

        count = _parse_track_count(payload.get("numberOfSongs"))
        if count is None:
            raise ValidationError("numberOfSongs must be a positive integer")

        name = payload.get("playlistName")
        request = cls(
            credential=payload.get("accessToken") or "",
            desired_track_count=count,
            playlist_name=name.strip() if isinstance(name, str) else "",
        )
        request.validate()
        return request


@dataclass(frozen=True)
class PlaylistHandle:
    """Playlist as created by the provider."""

    id: str
    name: str


@dataclass(frozen=True)
class OutcomeMessage:
    """The single terminal message shown to the user for one request."""

    text: str
    kind: OutcomeKind
    status_code: int = 200

    @property
    def is_success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @classmethod
    def success(cls) -> "OutcomeMessage":
        return cls(text=SUCCESS_MESSAGE, kind=OutcomeKind.SUCCESS, status_code=200)

    @classmethod
    def failure(cls, reason: FailureReason) -> "OutcomeMessage":
        status_code, text = FAILURE_RESPONSES[reason]
        return cls(text=text, kind=OutcomeKind.ERROR, status_code=status_code)

    def to_json(self) -> Dict[str, Any]:
        return {"message": self.text, "kind": self.kind.value}


@dataclass
class OrchestrationResult:
    """Terminal result of one orchestration run."""

    outcome: OutcomeMessage
    state: OrchestrationState
    states: List[OrchestrationState] = field(default_factory=list)
    reason: Optional[FailureReason] = None
    detail: str = ""
    fingerprint: Optional[str] = None
    playlist: Optional[PlaylistHandle] = None
    tracks_added: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state == OrchestrationState.POPULATED


def build_fingerprint(provider_user_id: str, playlist_name: str) -> str:
    """Idempotency key for a resolved user and requested playlist name."""
    return f"{provider_user_id}-{playlist_name}"
