"""
Tests for stack/health.py — HTTP probes against the application.
"""
import sys
from pathlib import Path
from unittest.mock import MagicMock

import requests

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from stack.health import (
    check_endpoint,
    validate_json_non_empty,
    validate_status_ok,
    wait_for_endpoint,
)

URL = "http://localhost:8061/api/v1/health"


def _session(*responses):
    session = MagicMock()
    session.get.side_effect = list(responses)
    return session


def _response(status=200, text='{"status":"OK"}'):
    return MagicMock(status_code=status, text=text)


class TestCheckEndpoint:
    def test_ok(self):
        ok, msg = check_endpoint(_session(_response()), URL)
        assert ok is True
        assert msg == "200 OK"

    def test_passes_timeout(self):
        session = _session(_response())
        check_endpoint(session, URL, timeout=7)
        session.get.assert_called_once_with(URL, timeout=7)

    def test_unexpected_status(self):
        ok, msg = check_endpoint(_session(_response(status=502)), URL)
        assert ok is False
        assert msg == "Expected 200, got 502"

    def test_expected_error_status(self):
        ok, _msg = check_endpoint(_session(_response(status=404)), URL, expected_status=404)
        assert ok is True

    def test_connection_error(self):
        ok, msg = check_endpoint(_session(requests.ConnectionError("refused")), URL)
        assert ok is False
        assert msg.startswith("Connection failed")

    def test_timeout(self):
        ok, msg = check_endpoint(_session(requests.Timeout()), URL, timeout=3)
        assert ok is False
        assert msg == "Timed out after 3s"

    def test_validation_failure(self):
        ok, msg = check_endpoint(_session(_response(text="<html>")), URL,
                                 validate_fn=validate_status_ok)
        assert ok is False
        assert msg == "Response validation failed"


class TestWaitForEndpoint:
    def test_succeeds_after_retries(self):
        session = _session(requests.ConnectionError("refused"), _response(status=503),
                           _response())
        sleep = MagicMock()
        assert wait_for_endpoint(session, URL, attempts=5, interval=3.0, sleep=sleep) is True
        assert sleep.call_count == 2
        sleep.assert_called_with(3.0)

    def test_gives_up(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        sleep = MagicMock()
        assert wait_for_endpoint(session, URL, attempts=3, sleep=sleep) is False
        assert session.get.call_count == 3
        assert sleep.call_count == 2


class TestValidators:
    def test_json_non_empty(self):
        assert validate_json_non_empty('{"a": 1}') is True
        assert validate_json_non_empty("[1]") is True
        assert validate_json_non_empty("{}") is False
        assert validate_json_non_empty("[]") is False
        assert validate_json_non_empty("not json") is False

    def test_status_ok(self):
        assert validate_status_ok('{"status": "OK"}') is True
        assert validate_status_ok('{"status": "ok"}') is True
        assert validate_status_ok('{"status": "DOWN"}') is False
        assert validate_status_ok("[]") is False
        assert validate_status_ok("") is False
