"""
Step Processor - One executor per step kind

Handles:
- Request steps (catalog lookup, interpolation, HTTP call, history, extraction)
- Delay steps
- Condition steps
- Log steps

Executors never touch run state. They return a StepOutcome on success and
raise an EngineError subclass on failure; the runner owns statuses and events.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from apiflow.flow_engine.conditions import ConditionEvaluator
from apiflow.flow_engine.errors import RequestExecutionError, VariableExtractionError
from apiflow.flow_engine.models import (
    DEFAULT_DELAY_MS,
    ConditionStep,
    DelayStep,
    FlowStep,
    LogStep,
    RequestStep,
    StepOutcome,
    StepType,
)
from apiflow.flow_engine.variable_resolver import MISSING, VariableResolver, resolve_path, to_text
from apiflow.services.http_client import HttpRequest, HttpStatusError, NetworkError

logger = logging.getLogger(__name__)

flow_log = logging.getLogger('apiflow.flow_log')

LOG_LEVEL_MAP = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'error': logging.ERROR,
}


async def maybe_await(value: Any) -> Any:
    """Collaborators may be sync or async."""
    if inspect.isawaitable(value):
        return await value
    return value


def default_log_sink(level: str, message: str):
    flow_log.log(LOG_LEVEL_MAP.get(level, logging.INFO), message)


@dataclass
class ExecutionContext:
    """
    What an executor may use while running one step.

    `bindings` is the variable snapshot taken right before the step.
    """
    flow_id: str
    bindings: Dict[str, Any]
    variable_store: Any
    http_client: Any
    endpoint_catalog: Any = None
    history: Any = None
    log_sink: Callable[[str, str], Any] = default_log_sink
    evaluator: ConditionEvaluator = field(default_factory=ConditionEvaluator)

    @property
    def resolver(self) -> VariableResolver:
        return VariableResolver(self.bindings)


class StepExecutor:
    """Base class for step executors"""

    step_type: Optional[StepType] = None

    async def execute(self, step: FlowStep, context: ExecutionContext) -> StepOutcome:
        raise NotImplementedError


def _endpoint_field(endpoint: Any, name: str, default: Any = None) -> Any:
    if isinstance(endpoint, dict):
        return endpoint.get(name, default)
    return getattr(endpoint, name, default)


class RequestStepExecutor(StepExecutor):
    step_type = StepType.REQUEST

    async def execute(self, step: RequestStep, context: ExecutionContext) -> StepOutcome:
        request = await self.build_request(step, context)
        logger.info(f"Request step {step.id}: {request.method} {request.url}")

        try:
            response = await context.http_client.execute(request)
        except HttpStatusError as e:
            await self._record_history(context, request, response=e.response, error=e)
            raise RequestExecutionError(
                f"Request failed: {e.message}", step.id, cause=e, request=request, response=e.response
            )
        except NetworkError as e:
            await self._record_history(context, request, error=e)
            raise RequestExecutionError(f"Request failed: {e.message}", step.id, cause=e, request=request)
        except Exception as e:
            # Injected clients may raise their own errors
            await self._record_history(context, request, error=e)
            raise RequestExecutionError(f"Request failed: {e}", step.id, cause=e, request=request)

        await self._record_history(context, request, response=response)
        extracted = await self._extract_variables(step, response, context)

        output = response.to_dict()
        output['extracted'] = extracted
        return StepOutcome(output=output)

    async def build_request(self, step: RequestStep, context: ExecutionContext) -> HttpRequest:
        """
        Merge catalog endpoint and step overrides, then interpolate.

        Raises:
            RequestExecutionError: Unknown endpoint or no URL
        """
        method = step.method
        url = step.url
        headers = dict(step.headers)
        body = step.body

        if step.endpoint_id:
            endpoint = None
            if context.endpoint_catalog is not None:
                endpoint = await maybe_await(context.endpoint_catalog.resolve(step.endpoint_id))
            if endpoint is None:
                raise RequestExecutionError(f"Endpoint not found: {step.endpoint_id}", step.id)

            method = method or _endpoint_field(endpoint, 'method')
            url = url or _endpoint_field(endpoint, 'path')
            headers = {**(_endpoint_field(endpoint, 'headers') or {}), **headers}
            if body is None:
                body = _endpoint_field(endpoint, 'body')

        if not url:
            raise RequestExecutionError("Request step has no URL", step.id)

        resolver = context.resolver
        return HttpRequest(
            method=(method or 'GET').upper(),
            url=resolver.resolve(url),
            headers={name: to_text(value) for name, value in resolver.resolve(headers).items()},
            params=resolver.resolve(dict(step.params)),
            body=resolver.resolve(body),
        )

    async def _record_history(self, context: ExecutionContext, request: HttpRequest,
                              response: Any = None, error: Any = None):
        if context.history is None:
            return
        try:
            await maybe_await(context.history.record(request, response=response, error=error))
        except Exception as e:
            logger.warning(f"Failed to record request history: {e}")

    async def _extract_variables(self, step: RequestStep, response: Any,
                                 context: ExecutionContext) -> Dict[str, Any]:
        extracted = {}
        for rule in step.extract_variables:
            try:
                value = resolve_path(response.body, rule.path)
            except VariableExtractionError as e:
                e.step_id = step.id
                logger.warning(f"Variable extraction failed for {rule.name}: {e}")
                continue

            if value is MISSING:
                logger.debug(f"Extraction path not found for {rule.name}: {rule.path}")
                continue

            await maybe_await(context.variable_store.set(rule.name, value))
            extracted[rule.name] = value
            logger.info(f"Extracted variable {rule.name} from step {step.id}")
        return extracted


class DelayStepExecutor(StepExecutor):
    step_type = StepType.DELAY

    def __init__(self, default_delay_ms: int = DEFAULT_DELAY_MS):
        self.default_delay_ms = default_delay_ms

    async def execute(self, step: DelayStep, context: ExecutionContext) -> StepOutcome:
        delay_ms = step.delay_ms if step.delay_ms is not None else self.default_delay_ms
        logger.debug(f"Delay step {step.id}: {delay_ms}ms")
        await asyncio.sleep(max(0, delay_ms) / 1000)
        return StepOutcome(output={'delay_ms': delay_ms})


class ConditionStepExecutor(StepExecutor):
    step_type = StepType.CONDITION

    async def execute(self, step: ConditionStep, context: ExecutionContext) -> StepOutcome:
        result = context.evaluator.evaluate_safely(step.condition, context.bindings, step.id)
        logger.info(f"Condition step {step.id}: {step.condition!r} -> {result}")

        if step.result_variable:
            await maybe_await(context.variable_store.set(step.result_variable, result))
        return StepOutcome(output={'result': result})


class LogStepExecutor(StepExecutor):
    step_type = StepType.LOG

    async def execute(self, step: LogStep, context: ExecutionContext) -> StepOutcome:
        message = context.resolver.resolve(step.message)
        await maybe_await(context.log_sink(step.level, message))
        return StepOutcome(output={'level': step.level, 'message': message})


def default_executors(default_delay_ms: int = DEFAULT_DELAY_MS) -> Dict[StepType, StepExecutor]:
    """Executor lookup table keyed by step kind."""
    return {
        StepType.REQUEST: RequestStepExecutor(),
        StepType.DELAY: DelayStepExecutor(default_delay_ms),
        StepType.CONDITION: ConditionStepExecutor(),
        StepType.LOG: LogStepExecutor(),
    }
