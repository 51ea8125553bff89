"""
http.py - httpx-backed external call provider for API steps.

Performs exactly one request per API step (no retry). Non-2xx responses are
returned, not raised: the step records the status code and the playbook
decides what to do with it. Transport errors raise, and the
FallbackExternalCallProvider converts them into the stub response.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from .base import ExternalCallProvider
from .models import ApiCallDescriptor

logger = logging.getLogger(__name__)


class HttpExternalCallProvider(ExternalCallProvider):
    """Synchronous httpx client for API step descriptors.

    Args:
        timeout_seconds: Default timeout when the descriptor has none.
        client: Optional pre-built httpx.Client (tests pass a MockTransport).
    """

    def __init__(self, timeout_seconds: float = 10.0, client: Optional[httpx.Client] = None):
        self._timeout = timeout_seconds
        self._client = client

    def _request_headers(self, descriptor: ApiCallDescriptor) -> Dict[str, str]:
        headers = {"x-request-id": str(uuid.uuid4())}
        headers.update(descriptor.headers)
        return headers

    def call(self, descriptor: ApiCallDescriptor) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "headers": self._request_headers(descriptor),
            "timeout": descriptor.timeout or self._timeout,
        }
        if descriptor.body is not None and descriptor.method != "GET":
            if isinstance(descriptor.body, (dict, list)):
                kwargs["json"] = descriptor.body
            else:
                kwargs["content"] = str(descriptor.body)

        logger.info("External call %s %s", descriptor.method, descriptor.url)
        if self._client is not None:
            response = self._client.request(descriptor.method, descriptor.url, **kwargs)
        else:
            with httpx.Client() as client:
                response = client.request(descriptor.method, descriptor.url, **kwargs)

        content_type = response.headers.get("content-type", "")
        data: Any
        if "application/json" in content_type:
            try:
                data = response.json()
            except ValueError:
                data = response.text
        else:
            data = response.text

        return {
            "status": response.status_code,
            "headers": dict(response.headers),
            "data": data,
            "stubbed": False,
        }
