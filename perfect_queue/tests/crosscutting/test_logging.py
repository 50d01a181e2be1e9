import json
import logging

from perfect_queue.crosscutting.logging import (
    SecretMasker, StructuredFormatter, CorrelationContext,
    setup_logging, get_logger, log_with_fields, log_orchestration_start,
    log_orchestration_complete, log_error, request_id_var, fingerprint_var
)


class ListHandler(logging.Handler):
    """Collects formatted records."""

    def __init__(self):
        super().__init__()
        self.setFormatter(StructuredFormatter())
        self.lines = []

    def emit(self, record):
        self.lines.append(self.format(record))

    @property
    def entries(self):
        return [json.loads(line) for line in self.lines]


class TestSecretMasker:
    """Tests for secret masking functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.masker = SecretMasker()

    def test_mask_api_token(self):
        text = "API token: abc123def456ghi789"
        masked = self.masker.mask_secrets(text)
        assert masked == "API token: abc1**********i789"

    def test_mask_client_secret(self):
        text = "client_secret: my_super_secret_key_12345"
        masked = self.masker.mask_secrets(text)
        assert "my_super_secret_key_12345" not in masked

    def test_mask_bearer_credential(self):
        text = "Authorization: Bearer BQDx9ZkL2mT7pQ"
        masked = self.masker.mask_secrets(text)
        assert "BQDx9ZkL2mT7pQ" not in masked
        assert "BQDx" in masked

    def test_mask_access_token_query(self):
        text = "redirect to /?access_token=BQDx9ZkL2mT7pQ"
        masked = self.masker.mask_secrets(text)
        assert "BQDx9ZkL2mT7pQ" not in masked

    def test_plain_text_untouched(self):
        text = "Created playlist pl_99 for user user42"
        assert self.masker.mask_secrets(text) == text

    def test_mask_dict_masks_sensitive_keys(self):
        masked = self.masker.mask_dict({
            'accessToken': 'tok_abcdefgh12345',
            'playlist_name': 'Gym Mix',
            'nested': {'client_secret': 'supersecretvalue'},
        })
        assert masked['accessToken'] == 'tok_*********2345'
        assert masked['playlist_name'] == 'Gym Mix'
        assert masked['nested']['client_secret'] == 'supe********alue'


class TestStructuredLogging:
    """Tests for the JSON formatter and helpers."""

    def setup_method(self):
        """Set up test fixtures."""
        self.logger = logging.getLogger('perfect_queue.tests.structured')
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        self.handler = ListHandler()
        self.logger.addHandler(self.handler)

    def teardown_method(self):
        """Clean up test fixtures."""
        self.logger.removeHandler(self.handler)

    def test_record_is_json(self):
        self.logger.info("hello")

        entry = self.handler.entries[0]
        assert entry['message'] == 'hello'
        assert entry['level'] == 'INFO'
        assert entry['logger'] == 'perfect_queue.tests.structured'
        assert entry['ts'].endswith('Z')

    def test_correlation_fields(self):
        with CorrelationContext(request_id='req1', fingerprint='user42-Gym Mix', stage='guard'):
            self.logger.info("inside")
        self.logger.info("outside")

        inside, outside = self.handler.entries
        assert inside['requestId'] == 'req1'
        assert inside['fingerprint'] == 'user42-Gym Mix'
        assert inside['stage'] == 'guard'
        assert 'requestId' not in outside

    def test_nested_context_restores_outer_values(self):
        with CorrelationContext(request_id='outer'):
            with CorrelationContext(request_id='inner'):
                assert request_id_var.get() == 'inner'
            assert request_id_var.get() == 'outer'
        assert request_id_var.get() is None
        assert fingerprint_var.get() is None

    def test_log_with_fields(self):
        log_with_fields(self.logger, 'INFO', 'with fields', {'count': 12}, playlist='pl_99')

        entry = self.handler.entries[0]
        assert entry['fields'] == {'count': 12, 'playlist': 'pl_99'}

    def test_orchestration_helpers(self):
        log_orchestration_start(self.logger, 'req1', 'Gym Mix', 30)
        log_orchestration_complete(self.logger, 'failed', 'no_tracks_found', 400)

        start, complete = self.handler.entries
        assert start['requestId'] == 'req1'
        assert start['fields']['track_count'] == 30
        assert complete['level'] == 'WARNING'
        assert complete['fields']['status_code'] == 400

    def test_log_error_includes_exception(self):
        try:
            raise ValueError("bad value")
        except ValueError as e:
            log_error(self.logger, 'Something failed', e)

        entry = self.handler.entries[0]
        assert entry['level'] == 'ERROR'
        assert entry['fields']['error_type'] == 'ValueError'
        assert 'ValueError' in entry['exception']


def test_setup_logging_configures_package_logger(tmp_path):
    log_file = tmp_path / 'perfect_queue.log'
    logger = setup_logging('DEBUG', log_file=str(log_file))
    try:
        assert logger.name == 'perfect_queue'
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2

        get_logger('perfect_queue.application').info("to file")
        for handler in logger.handlers:
            handler.flush()

        line = log_file.read_text().strip().splitlines()[-1]
        assert json.loads(line)['message'] == 'to file'
    finally:
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
