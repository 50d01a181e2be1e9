import os
import sys
import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()


@pytest.fixture(autouse=True)
def _isolate_environment():
    """Keep Spotify and Perfect Queue settings from leaking across tests.
    A developer's .env or shell may set these; clear before each test and
    restore afterwards so tests setting them explicitly stay deterministic.
    """
    keys = [k for k in os.environ if k.startswith('SPOTIFY_') or k.startswith('PERFECT_QUEUE_')]
    backup = {k: os.environ.get(k) for k in keys}
    for k in keys:
        os.environ.pop(k, None)
    try:
        yield
    finally:
        for k in [k for k in os.environ if k.startswith('SPOTIFY_') or k.startswith('PERFECT_QUEUE_')]:
            os.environ.pop(k, None)
        os.environ.update({k: v for k, v in backup.items() if v is not None})
