"""
Tests for the API step handler and external call providers.

These tests verify:
1. The call descriptor carries method, url, headers, body-or-input and timeout
2. The httpx provider issues one request and returns status and data
3. Transport failures fall back to the stub response without raising
"""

import json

import httpx

from playbook_engine.runtime.providers import (
    ApiCallDescriptor,
    ExternalCallProvider,
    FallbackExternalCallProvider,
    HttpExternalCallProvider,
    StubExternalCallProvider,
)
from playbook_engine.runtime.stepwise.handlers import ApiStepHandler, StepExecutionContext

from conftest import ORG, PLAYBOOK_ID, make_step


class RecordingCallProvider(ExternalCallProvider):
    def __init__(self):
        self.descriptors = []

    def call(self, descriptor):
        self.descriptors.append(descriptor)
        return {"status": 202, "data": {"accepted": True}, "stubbed": False}


def _ctx(config, step_input=None):
    return StepExecutionContext(
        org_id=ORG,
        run_id="run-1",
        playbook_id=PLAYBOOK_ID,
        step=make_step("notify", "API", config),
        input=step_input,
    )


class TestApiStepHandler:
    """Tests for descriptor construction and output shape."""

    def test_input_used_as_body_when_none_configured(self):
        provider = RecordingCallProvider()
        handler = ApiStepHandler(provider, default_timeout=4.0)
        outcome = handler.execute(
            _ctx({"method": "POST", "url": "https://hooks.example.com/x"}, {"id": 9})
        )
        descriptor = provider.descriptors[0]
        assert descriptor.method == "POST"
        assert descriptor.body == {"id": 9}
        assert descriptor.timeout == 4.0
        assert outcome.output["response"] == {
            "status": 202,
            "data": {"accepted": True},
            "stubbed": False,
        }
        assert outcome.output["metadata"]["stubbed"] is False

    def test_configured_body_and_headers(self):
        provider = RecordingCallProvider()
        handler = ApiStepHandler(provider)
        handler.execute(
            _ctx(
                {
                    "method": "PUT",
                    "url": "https://api.example.com/items/1",
                    "headers": {"authorization": "Bearer t"},
                    "body": {"name": "fixed"},
                    "timeout": 2,
                },
                {"ignored": True},
            )
        )
        descriptor = provider.descriptors[0]
        assert descriptor.body == {"name": "fixed"}
        assert descriptor.headers == {"authorization": "Bearer t"}
        assert descriptor.timeout == 2

    def test_stub_provider_output(self):
        handler = ApiStepHandler(StubExternalCallProvider())
        output = handler.execute(_ctx({"method": "GET", "url": "https://example.com"})).output
        assert output["response"]["status"] == 200
        assert output["metadata"]["stubbed"] is True
        assert output["method"] == "GET"
        assert output["url"] == "https://example.com"


class TestHttpExternalCallProvider:
    """Tests for the httpx-backed provider using MockTransport."""

    def test_json_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            seen["request_id"] = request.headers.get("x-request-id")
            seen["custom"] = request.headers.get("x-custom")
            return httpx.Response(201, json={"ok": True})

        client = httpx.Client(transport=httpx.MockTransport(handler))
        provider = HttpExternalCallProvider(client=client)
        response = provider.call(
            ApiCallDescriptor(
                method="POST",
                url="https://api.example.com/events",
                headers={"x-custom": "1"},
                body={"event": "done"},
            )
        )
        assert response["status"] == 201
        assert response["data"] == {"ok": True}
        assert response["stubbed"] is False
        assert seen["method"] == "POST"
        assert seen["body"] == {"event": "done"}
        assert seen["request_id"]
        assert seen["custom"] == "1"

    def test_non_2xx_returned_not_raised(self):
        client = httpx.Client(
            transport=httpx.MockTransport(lambda request: httpx.Response(503, text="busy"))
        )
        response = HttpExternalCallProvider(client=client).call(
            ApiCallDescriptor(method="GET", url="https://api.example.com/health")
        )
        assert response["status"] == 503
        assert response["data"] == "busy"

    def test_transport_error_falls_back_to_stub(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        provider = FallbackExternalCallProvider(HttpExternalCallProvider(client=client))
        response = provider.call(ApiCallDescriptor(method="GET", url="https://down.example.com"))
        assert response["stubbed"] is True
        assert response["status"] == 200
        assert "connection refused" in response["error"]
