"""
Assistant webhook client

Posts incoming-message events to an external assistant (e.g. an automation
workflow) and returns its JSON decision. Failures never raise: a timeout,
transport error, non-2xx status or unparsable body yields None.
"""

import time
from typing import Any, Dict, Optional

import requests

from logging_config import get_logger, performance_logger

logger = get_logger(__name__)


class AssistantWebhookClient:
    """Client for the queue assistant webhook"""

    def __init__(self, default_url: Optional[str] = None, token: Optional[str] = None,
                 timeout: float = 15.0):
        """
        Args:
            default_url: Webhook used when a queue has no URL of its own
            token: Bearer token sent with every call
            timeout: Seconds to wait for the assistant before giving up
        """
        self.default_url = default_url
        self.token = token
        self.timeout = timeout

    def call(self, url: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"

        started = time.monotonic()
        try:
            response = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.warning("Assistant webhook timed out", url=url, timeout=self.timeout)
            return None
        except requests.exceptions.RequestException as e:
            logger.warning("Assistant webhook request failed", url=url, error=str(e))
            return None

        duration_ms = round((time.monotonic() - started) * 1000, 2)
        performance_logger.log_api_call('assistant_webhook', url, duration_ms, response.status_code)

        if not response.ok:
            logger.warning("Assistant webhook returned an error status", url=url,
                           status_code=response.status_code)
            return None

        try:
            data = response.json()
        except ValueError:
            logger.warning("Assistant webhook returned an unparsable body", url=url)
            return None

        if not isinstance(data, dict):
            logger.warning("Assistant webhook returned a non-object body", url=url)
            return None
        return data
