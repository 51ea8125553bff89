"""API step handler: hands a call descriptor to the external call capability."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Optional

from ...providers import ApiCallDescriptor, ExternalCallProvider
from ...types import ApiStepConfig, StepType
from ...types._time import _datetime_to_iso, _utcnow
from .base import StepExecutionContext, StepHandler, StepOutcome

logger = logging.getLogger(__name__)


class ApiStepHandler(StepHandler):
    """Executes API steps. No retry: one call per dispatch.

    The body is the configured body, or the step input when none is set.
    """

    def __init__(
        self, external_calls: ExternalCallProvider, default_timeout: Optional[float] = None
    ):
        self._external_calls = external_calls
        self._default_timeout = default_timeout

    @property
    def step_type(self) -> StepType:
        return StepType.API

    def execute(self, ctx: StepExecutionContext) -> StepOutcome:
        config: ApiStepConfig = ctx.step.config
        body = config.body if config.body is not None else ctx.input
        descriptor = ApiCallDescriptor(
            method=config.method,
            url=config.url,
            headers=dict(config.headers or {}),
            body=copy.deepcopy(body),
            timeout=config.timeout if config.timeout is not None else self._default_timeout,
        )

        logger.debug("API step '%s': %s %s", ctx.step.key, descriptor.method, descriptor.url)
        response: Dict[str, Any] = self._external_calls.call(descriptor)

        output: Dict[str, Any] = {
            "method": descriptor.method,
            "url": descriptor.url,
            "headers": config.headers,
            "body": descriptor.body,
            "response": response,
            "metadata": {
                "executedAt": _datetime_to_iso(_utcnow()),
                "stubbed": bool(response.get("stubbed", False)),
            },
        }
        return StepOutcome(output=output)
