import argparse
import logging
import sys
import webbrowser
from typing import List, Optional

from dotenv import load_dotenv

from perfect_queue.application.dispatch import DispatchLock, FileDispatchTracker
from perfect_queue.crosscutting.config import ConfigError, get_secret_manager
from perfect_queue.crosscutting.logging import setup_logging
from perfect_queue.interfaces.client import PlaylistDispatcher, extract_access_token, validate_form


class CLI:
    """Command Line Interface for Perfect Queue."""

    def __init__(self):
        """Initialize CLI."""
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog='perfect-queue',
            description='Turn your recently played Spotify tracks into a playlist'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        serve_parser = subparsers.add_parser('serve', help='Run the HTTP server')
        serve_parser.add_argument('--host', default='localhost', help='Bind address (default: localhost)')
        serve_parser.add_argument('--port', type=int, default=3000, help='Port (default: 3000)')
        serve_parser.add_argument('--debug', action='store_true', help='Enable Flask debug mode')
        serve_parser.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='INFO',
            help='Set logging level'
        )

        create_parser = subparsers.add_parser('create', help='Create a playlist from recent tracks')
        create_parser.add_argument(
            '--count',
            type=int,
            default=None,
            help='How many songs back to look (default: last used or 30)'
        )
        create_parser.add_argument(
            '--name',
            default=None,
            help='Playlist name (default: last used)'
        )
        create_parser.add_argument(
            '--server',
            default='http://localhost:3000',
            help='Perfect Queue server URL (default: http://localhost:3000)'
        )
        create_parser.add_argument(
            '--token',
            default=None,
            help='Spotify access token; skips the browser authorization step'
        )
        create_parser.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='WARNING',
            help='Set logging level'
        )

        return parser

    def _authorize(self, server: str) -> Optional[str]:
        """Open the consent screen and read the token back from the redirect URL."""
        auth_url = f"{server.rstrip('/')}/api/spotify-auth"
        print(f"Authorize in your browser: {auth_url}")
        webbrowser.open(auth_url)
        redirected = input("Paste the URL you were redirected to: ")
        return extract_access_token(redirected)

    def _create_playlist(self, args: argparse.Namespace) -> int:
        """Run the client-side creation flow. Returns the exit code."""
        logger = logging.getLogger(__name__)
        secret_manager = get_secret_manager()

        preferences = secret_manager.load_preferences()
        count = args.count if args.count is not None else preferences['number_of_songs']
        name = args.name if args.name is not None else preferences['playlist_name']

        problem = validate_form(count, name)
        if problem is not None:
            print(problem.text)
            return 1

        # Remember the form values across the authorization redirect
        secret_manager.save_preferences(count, name)

        token = args.token or self._authorize(args.server)
        if not token:
            print("Access token not found. Please authenticate with Spotify.")
            return 1

        dispatcher = PlaylistDispatcher(
            base_url=args.server,
            lock=DispatchLock(FileDispatchTracker(secret_manager.dispatch_file)),
        )
        outcome = dispatcher.dispatch(token, count, name)

        if outcome is None:
            logger.info("Token already used for a playlist creation")
            print("A playlist was already requested with this authorization.")
            return 0

        print(outcome.text)
        return 0 if outcome.is_success else 1

    def _serve(self, args: argparse.Namespace) -> int:
        """Run the HTTP server."""
        from perfect_queue.interfaces.http import HTTPServer

        server = HTTPServer(host=args.host, port=args.port, debug=args.debug)
        server.run()
        return 0

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run the CLI and return the process exit code."""
        args = self.parser.parse_args(argv)

        if not args.command:
            self.parser.print_help()
            return 1

        setup_logging(args.log_level)
        logger = logging.getLogger(__name__)

        try:
            if args.command == 'serve':
                return self._serve(args)
            return self._create_playlist(args)
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            return 130
        except ConfigError as e:
            logger.error(f"Configuration error: {e}")
            print(f"Configuration error: {e}")
            return 1


def main():
    """Main entry point."""
    load_dotenv()
    sys.exit(CLI().run())


if __name__ == '__main__':
    main()
