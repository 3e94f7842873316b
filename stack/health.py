"""HTTP health probes for the deployed application."""

from __future__ import annotations

import json
import time
from typing import Callable, Optional

import requests


def check_endpoint(session: requests.Session, url: str, expected_status: int = 200,
                   timeout: float = 5,
                   validate_fn: Optional[Callable[[str], bool]] = None) -> tuple[bool, str]:
    """Check a single endpoint and return (success, message).

    Args:
        session: requests session to issue the GET with.
        url: Full URL to probe.
        expected_status: Expected HTTP status code.
        timeout: Request timeout in seconds.
        validate_fn: Optional callable(response_body) -> bool for content checks.

    Returns:
        (passed, message) tuple.
    """
    try:
        response = session.get(url, timeout=timeout)
    except requests.ConnectionError as e:
        return False, f"Connection failed: {e}"
    except requests.Timeout:
        return False, f"Timed out after {timeout}s"
    except requests.RequestException as e:
        return False, f"Error: {e}"

    if response.status_code != expected_status:
        return False, f"Expected {expected_status}, got {response.status_code}"
    if validate_fn and not validate_fn(response.text):
        return False, "Response validation failed"
    return True, f"{response.status_code} OK"


def wait_for_endpoint(session: requests.Session, url: str, attempts: int = 10,
                      interval: float = 3.0, timeout: float = 5,
                      sleep: Callable[[float], None] = time.sleep) -> bool:
    """Probe *url* until it answers 200 or *attempts* run out."""
    for attempt in range(1, attempts + 1):
        ok, _msg = check_endpoint(session, url, timeout=timeout)
        if ok:
            return True
        if attempt < attempts:
            sleep(interval)
    return False


def validate_json_non_empty(body: str) -> bool:
    """Validate that the body is valid JSON with non-empty content."""
    try:
        data = json.loads(body)
    except ValueError:
        return False
    if isinstance(data, (list, dict)):
        return len(data) > 0
    return True


def validate_status_ok(body: str) -> bool:
    """Body is the app's health payload, ``{"status": "OK"}``."""
    try:
        data = json.loads(body)
    except ValueError:
        return False
    return isinstance(data, dict) and str(data.get("status", "")).upper() == "OK"
