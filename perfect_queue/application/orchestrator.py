"""Playlist-creation state machine.

One run walks IDLE -> IDENTITY_RESOLVED -> GUARD_ACQUIRED -> TRACKS_FETCHED ->
PLAYLIST_CREATED -> POPULATED. Any step may instead move the run to FAILED with a
reason; every run ends with exactly one OutcomeMessage.
"""

import logging
import uuid
from typing import Callable, Dict, List, Optional

from perfect_queue.crosscutting.logging import (
    CorrelationContext, log_orchestration_complete, log_orchestration_start, log_transition
)
from perfect_queue.domain.entities import (
    CreationRequest, FailureReason, OrchestrationResult, OrchestrationState, OutcomeMessage,
    PlaylistHandle, build_fingerprint
)
from perfect_queue.domain.errors import EmptyResultError, ProviderError, ValidationError
from perfect_queue.domain.ports import DuplicateRequestGuard, StreamingProvider

logger = logging.getLogger(__name__)

State = OrchestrationState


class OrchestrationRun:
    """Mutable state of a single orchestration."""

    def __init__(self, request: CreationRequest):
        self.request = request
        self.state = State.IDLE
        self.states: List[OrchestrationState] = [State.IDLE]
        self.reason: Optional[FailureReason] = None
        self.detail = ""
        self.provider_user_id: Optional[str] = None
        self.fingerprint: Optional[str] = None
        self.track_uris: List[str] = []
        self.playlist: Optional[PlaylistHandle] = None

    def advance(self, target: OrchestrationState) -> None:
        log_transition(logger, self.state.value, target.value)
        self.state = target
        self.states.append(target)

    def fail(self, reason: FailureReason, detail: str) -> None:
        log_transition(logger, self.state.value, State.FAILED.value, reason=reason.value)
        self.reason = reason
        self.detail = detail
        self.state = State.FAILED
        self.states.append(State.FAILED)

    @property
    def guard_acquired(self) -> bool:
        return State.GUARD_ACQUIRED in self.states


class PlaylistOrchestrator:
    """Turns a CreationRequest into a populated playlist, at most once per fingerprint."""

    def __init__(self,
                 provider: StreamingProvider,
                 guard: DuplicateRequestGuard,
                 release_claim_on_failure: bool = False):
        """Initialize orchestrator.

        Args:
            provider: Streaming API client performing the provider calls
            guard: Claim store rejecting repeated fingerprints
            release_claim_on_failure: Drop the claim when a provider call fails
                after the guard was acquired, so the same request may be retried
        """
        self.provider = provider
        self.guard = guard
        self.release_claim_on_failure = release_claim_on_failure
        self._steps: Dict[OrchestrationState, Callable[[OrchestrationRun], None]] = {
            State.IDLE: self._resolve_identity,
            State.IDENTITY_RESOLVED: self._acquire_guard,
            State.GUARD_ACQUIRED: self._fetch_tracks,
            State.TRACKS_FETCHED: self._create_playlist,
            State.PLAYLIST_CREATED: self._populate_playlist,
        }

    def create_playlist(self, request: CreationRequest) -> OrchestrationResult:
        """Run the whole sequence and return its single terminal result."""
        run = OrchestrationRun(request)
        request_id = uuid.uuid4().hex[:12]

        with CorrelationContext(request_id=request_id):
            try:
                request.validate()
            except ValidationError as e:
                run.fail(FailureReason.VALIDATION_ERROR, str(e))
                return self._finish(run)

            log_orchestration_start(logger, request_id, request.playlist_name, request.desired_track_count)

            while run.state in self._steps:
                with CorrelationContext(fingerprint=run.fingerprint):
                    self._steps[run.state](run)

            with CorrelationContext(fingerprint=run.fingerprint):
                return self._finish(run)

    def _resolve_identity(self, run: OrchestrationRun) -> None:
        try:
            run.provider_user_id = self.provider.resolve_identity(run.request.credential)
        except ProviderError as e:
            logger.error(f"Identity resolution failed: status={e.status_code} body={e.body}")
            run.fail(FailureReason.AUTH_ERROR, str(e))
            return
        run.fingerprint = build_fingerprint(run.provider_user_id, run.request.playlist_name)
        run.advance(State.IDENTITY_RESOLVED)

    def _acquire_guard(self, run: OrchestrationRun) -> None:
        if not self.guard.try_acquire(run.fingerprint):
            logger.warning(f"Duplicate playlist creation request: {run.fingerprint}")
            run.fail(FailureReason.DUPLICATE_REQUEST, f"{run.fingerprint} already claimed")
            return
        run.advance(State.GUARD_ACQUIRED)

    def _fetch_tracks(self, run: OrchestrationRun) -> None:
        try:
            run.track_uris = self.provider.fetch_recent_tracks(
                run.request.credential, run.request.desired_track_count
            )
        except EmptyResultError as e:
            logger.warning("No recent tracks found")
            run.fail(FailureReason.NO_TRACKS_FOUND, str(e))
            return
        except ProviderError as e:
            logger.error(f"Fetching recent tracks failed: status={e.status_code} body={e.body}")
            run.fail(FailureReason.PROVIDER_FAILURE, str(e))
            return
        run.advance(State.TRACKS_FETCHED)

    def _create_playlist(self, run: OrchestrationRun) -> None:
        try:
            run.playlist = self.provider.create_playlist(
                run.request.credential, run.provider_user_id, run.request.playlist_name
            )
        except ProviderError as e:
            logger.error(f"Playlist creation failed: status={e.status_code} body={e.body}")
            run.fail(FailureReason.PROVIDER_FAILURE, str(e))
            return
        run.advance(State.PLAYLIST_CREATED)

    def _populate_playlist(self, run: OrchestrationRun) -> None:
        with CorrelationContext(playlist_id=run.playlist.id):
            try:
                self.provider.populate_playlist(run.request.credential, run.playlist.id, run.track_uris)
            except ProviderError as e:
                # The empty playlist stays on the provider side
                logger.error(f"Populating playlist {run.playlist.id} failed: "
                             f"status={e.status_code} body={e.body}")
                run.fail(FailureReason.PROVIDER_FAILURE, str(e))
                return
            run.advance(State.POPULATED)

    def _finish(self, run: OrchestrationRun) -> OrchestrationResult:
        if (run.reason == FailureReason.PROVIDER_FAILURE
                and run.guard_acquired
                and self.release_claim_on_failure):
            logger.info(f"Releasing claim {run.fingerprint} after provider failure")
            self.guard.release(run.fingerprint)

        if run.state == State.POPULATED:
            outcome = OutcomeMessage.success()
        else:
            outcome = OutcomeMessage.failure(run.reason)

        log_orchestration_complete(
            logger, run.state.value, run.reason.value if run.reason else None, outcome.status_code,
            fingerprint=run.fingerprint,
            tracks_added=len(run.track_uris) if run.state == State.POPULATED else 0,
        )

        return OrchestrationResult(
            outcome=outcome,
            state=run.state,
            states=list(run.states),
            reason=run.reason,
            detail=run.detail,
            fingerprint=run.fingerprint,
            playlist=run.playlist,
            tracks_added=len(run.track_uris) if run.state == State.POPULATED else 0,
        )
