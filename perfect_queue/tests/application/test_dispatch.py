import json
import os
import shutil
import tempfile

import pytest

from perfect_queue.application.dispatch import (
    DispatchLock, FileDispatchTracker, InMemoryDispatchTracker, credential_digest
)


class TestInMemoryDispatchTracker:
    """Tests for the in-process dispatch record."""

    def test_mark_then_has(self):
        tracker = InMemoryDispatchTracker()

        assert tracker.has_dispatched("tok_abc") is False
        tracker.mark_dispatched("tok_abc")
        assert tracker.has_dispatched("tok_abc") is True
        assert tracker.has_dispatched("tok_other") is False


class TestFileDispatchTracker:
    """Tests for the file-backed dispatch record."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, 'dispatched.json')

    def teardown_method(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_survives_new_instance(self):
        FileDispatchTracker(self.path).mark_dispatched("tok_abc")

        assert FileDispatchTracker(self.path).has_dispatched("tok_abc") is True

    def test_raw_credential_is_not_written(self):
        FileDispatchTracker(self.path).mark_dispatched("tok_secret_value")

        with open(self.path) as f:
            content = f.read()

        assert "tok_secret_value" not in content
        assert credential_digest("tok_secret_value") in content

    def test_keeps_only_newest_entries(self):
        tracker = FileDispatchTracker(self.path, max_entries=2)

        for token in ("tok_1", "tok_2", "tok_3"):
            tracker.mark_dispatched(token)

        assert tracker.has_dispatched("tok_1") is False
        assert tracker.has_dispatched("tok_2") is True
        assert tracker.has_dispatched("tok_3") is True

    @pytest.mark.parametrize('content', [
        "{not json",
        '["abc"]',
        '"abc"',
        '{"dispatched": 5}',
    ])
    def test_corrupt_file_is_treated_as_empty(self, content):
        with open(self.path, 'w') as f:
            f.write(content)

        tracker = FileDispatchTracker(self.path)

        assert tracker.has_dispatched("tok_abc") is False
        tracker.mark_dispatched("tok_abc")
        with open(self.path) as f:
            assert json.load(f)['dispatched'] == [credential_digest("tok_abc")]

    def test_missing_directory_is_created(self):
        nested = os.path.join(self.temp_dir, 'a', 'b', 'dispatched.json')

        FileDispatchTracker(nested).mark_dispatched("tok_abc")

        assert os.path.exists(nested)


class TestDispatchLock:
    """Tests for the mark-then-send gate."""

    def test_first_claim_wins(self):
        lock = DispatchLock(InMemoryDispatchTracker())

        assert lock.claim("tok_abc") is True
        assert lock.claim("tok_abc") is False
        assert lock.claim("tok_other") is True

    def test_marks_before_returning(self):
        tracker = InMemoryDispatchTracker()
        lock = DispatchLock(tracker)

        lock.claim("tok_abc")

        assert tracker.has_dispatched("tok_abc") is True
