import logging
from datetime import datetime
from typing import Optional
from urllib.parse import urlencode

from flask import Flask, request, jsonify, redirect

from perfect_queue.application.idempotency import InMemoryRequestGuard
from perfect_queue.application.orchestrator import PlaylistOrchestrator
from perfect_queue.crosscutting.config import ServerSettings, SecretManager, get_secret_manager
from perfect_queue.crosscutting.logging import log_error
from perfect_queue.domain.entities import CreationRequest, FailureReason, OutcomeMessage, FAILURE_MESSAGE, OutcomeKind
from perfect_queue.domain.errors import CredentialExchangeError, ValidationError
from perfect_queue.infrastructure.auth import SpotifyCredentialExchange
from perfect_queue.infrastructure.providers.spotify import SpotifyClient


VERSION = "0.1.0"


class HTTPServer:
    """HTTP server exposing authorization and playlist creation."""

    def __init__(self,
                 host: str = 'localhost',
                 port: int = 3000,
                 debug: bool = False,
                 settings: Optional[ServerSettings] = None,
                 secret_manager: Optional[SecretManager] = None,
                 orchestrator: Optional[PlaylistOrchestrator] = None,
                 credential_exchange: Optional[SpotifyCredentialExchange] = None):
        """Initialize HTTP server.

        Collaborators default to the Spotify-backed implementations configured
        from the environment; tests inject their own.
        """
        self.host = host
        self.port = port
        self.debug = debug
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)

        self.secret_manager = secret_manager or get_secret_manager()
        self.settings = settings or self.secret_manager.get_server_settings()

        self.orchestrator = orchestrator or PlaylistOrchestrator(
            provider=SpotifyClient(requests_timeout=self.settings.requests_timeout),
            guard=InMemoryRequestGuard(
                ttl_seconds=self.settings.guard_ttl_seconds,
                max_entries=self.settings.guard_max_entries,
            ),
            release_claim_on_failure=self.settings.release_claim_on_failure,
        )
        self.credential_exchange = credential_exchange or SpotifyCredentialExchange(
            client_id=self.settings.client_id,
            client_secret=self.settings.client_secret,
            redirect_uri=self.settings.redirect_uri,
            timeout=self.settings.requests_timeout,
        )

        self._setup_routes()

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'version': VERSION,
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/', methods=['GET'])
        def root():
            """Root endpoint with basic info."""
            return jsonify({
                'service': 'Perfect Queue HTTP Interface',
                'version': VERSION,
                'endpoints': {
                    'health': '/health',
                    'spotify_auth': '/api/spotify-auth',
                    'oauth_callback': '/api/callback',
                    'create_playlist': '/api/create-playlist'
                }
            }), 200

        @self.app.route('/api/spotify-auth', methods=['GET'])
        def spotify_auth():
            """Send the user to the Spotify consent screen."""
            try:
                auth_url = self.credential_exchange.build_authorize_url(
                    self.secret_manager.get_spotify_scope_string(),
                    show_dialog=True,
                )
            except CredentialExchangeError as e:
                self.logger.error(f"Spotify auth misconfigured: {e}")
                return jsonify({
                    'error': 'Missing environment variables: Client ID or Redirect URI'
                }), 500

            return redirect(auth_url)

        @self.app.route('/api/callback', methods=['GET'])
        def oauth_callback():
            """Exchange the authorization code and hand the token back to the UI."""
            error = request.args.get('error')
            code = request.args.get('code')

            if error:
                self.logger.error(f"OAuth error: {error}")
                return jsonify({
                    'error': 'OAuth authorization failed',
                    'details': error
                }), 400

            if not code:
                return jsonify({'error': 'Authorization code is missing'}), 400

            try:
                access_token = self.credential_exchange.exchange(code)
            except CredentialExchangeError as e:
                self.logger.error(f"Failed to obtain access token: {e}")
                return jsonify({'error': 'Failed to obtain access token'}), 500

            separator = '&' if '?' in self.settings.post_auth_redirect else '?'
            target = f"{self.settings.post_auth_redirect}{separator}{urlencode({'access_token': access_token})}"
            return redirect(target)

        @self.app.route('/api/create-playlist', methods=['POST'])
        def create_playlist():
            """Create a playlist from the caller's recently played tracks."""
            payload = request.get_json(silent=True)

            try:
                creation_request = CreationRequest.from_payload(payload)
            except ValidationError as e:
                self.logger.error(f"Invalid playlist creation request: {e}")
                outcome = OutcomeMessage.failure(FailureReason.VALIDATION_ERROR)
                return jsonify(outcome.to_json()), outcome.status_code

            try:
                result = self.orchestrator.create_playlist(creation_request)
            except Exception as e:
                log_error(self.logger, 'Unexpected error creating playlist', e)
                outcome = OutcomeMessage(text=FAILURE_MESSAGE, kind=OutcomeKind.ERROR, status_code=500)
                return jsonify(outcome.to_json()), outcome.status_code

            return jsonify(result.outcome.to_json()), result.outcome.status_code

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting Perfect Queue HTTP server on {self.host}:{self.port}")
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug,
            threaded=True
        )


def create_app(**kwargs) -> Flask:
    """Create Flask app, used by tests and WSGI servers."""
    server = HTTPServer(**kwargs)
    return server.app
