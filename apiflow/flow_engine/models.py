"""
Flow Models - Flows, typed steps, statuses and run results

A flow is an ordered list of steps. Step order is execution order and step ids
are unique inside a flow. Flow definitions arrive as JSON from the tester UI,
so `Flow.from_dict` accepts camelCase keys (and a few legacy aliases) and
`to_dict` produces them.

Flow definition example:
{
    "id": "f_login",
    "name": "Login and fetch profile",
    "steps": [
        {
            "type": "request",
            "name": "login",
            "method": "POST",
            "url": "/auth/login",
            "body": {"email": "${email}", "password": "${password}"},
            "extractVariables": [{"name": "token", "path": "data.token"}]
        },
        {"type": "delay", "name": "wait", "delayMs": 500},
        {
            "type": "request",
            "name": "profile",
            "endpointId": "users.me",
            "headers": {"Authorization": "Bearer ${token}"},
            "skipCondition": "!token"
        },
        {"type": "log", "name": "done", "message": "logged in as ${email}"}
    ]
}
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Type
from uuid import uuid4

from apiflow.flow_engine.errors import EngineError, InvalidFlowError, UnknownStepTypeError

logger = logging.getLogger(__name__)

DEFAULT_DELAY_MS = 1000
LOG_LEVELS = ('debug', 'info', 'warn', 'error')


class StepType(str, Enum):
    """Step kinds"""
    REQUEST = 'request'
    DELAY = 'delay'
    CONDITION = 'condition'
    LOG = 'log'


class StepStatus(str, Enum):
    """Per-step status inside a run"""
    PENDING = 'pending'
    RUNNING = 'running'
    SUCCESS = 'success'
    ERROR = 'error'
    SKIPPED = 'skipped'

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.SUCCESS, StepStatus.ERROR, StepStatus.SKIPPED)


def generate_id(prefix: str = '') -> str:
    return f"{prefix}{uuid4().hex[:12]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    """Accepts epoch milliseconds (UI) or ISO strings."""
    if value is None:
        return _utcnow()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise InvalidFlowError(f"Invalid timestamp: {value!r}")
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first key present in data (camelCase, snake_case, legacy)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class ExtractionRule:
    """Copy a value from a response body into the variable store"""
    name: str
    path: str
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExtractionRule':
        if not isinstance(data, dict) or not data.get('name') or not data.get('path'):
            raise InvalidFlowError(f"Extraction rule needs 'name' and 'path': {data!r}")
        return cls(name=data['name'], path=data['path'], description=data.get('description'))

    def to_dict(self) -> Dict[str, Any]:
        result = {'name': self.name, 'path': self.path}
        if self.description:
            result['description'] = self.description
        return result


# =============================================================================
# STEPS
# =============================================================================

@dataclass
class FlowStep:
    """
    Common step fields.

    `skip_condition` is evaluated before dispatch for every kind, independently
    of a ConditionStep's own `condition`.
    """
    step_type: ClassVar[Optional[StepType]] = None

    id: str
    name: str
    description: Optional[str] = None
    skip_condition: Optional[str] = None

    @classmethod
    def _common_from_dict(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'id': str(_pick(data, 'id', default=None) or generate_id('s_')),
            'name': _pick(data, 'name', default='') or '',
            'description': _pick(data, 'description'),
            'skip_condition': _pick(data, 'skipCondition', 'skip_condition', 'skipIf'),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FlowStep':
        return cls(**cls._common_from_dict(data))

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'id': self.id,
            'type': self.step_type.value if self.step_type else None,
            'name': self.name,
        }
        if self.description:
            result['description'] = self.description
        if self.skip_condition:
            result['skipCondition'] = self.skip_condition
        return result


@dataclass
class RequestStep(FlowStep):
    step_type: ClassVar[StepType] = StepType.REQUEST

    endpoint_id: Optional[str] = None
    method: Optional[str] = None
    url: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    body: Any = None
    extract_variables: List[ExtractionRule] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RequestStep':
        rules = _pick(data, 'extractVariables', 'extract_variables', 'extracts', default=[])
        if not isinstance(rules, list):
            raise InvalidFlowError("extractVariables must be a list")
        method = _pick(data, 'method')
        return cls(
            **cls._common_from_dict(data),
            endpoint_id=_pick(data, 'endpointId', 'endpoint_id', 'endpoint'),
            method=method.upper() if isinstance(method, str) else method,
            url=_pick(data, 'url'),
            headers=dict(_pick(data, 'headers', default={})),
            params=dict(_pick(data, 'params', 'parameters', default={})),
            body=data.get('body'),
            extract_variables=[ExtractionRule.from_dict(r) for r in rules],
        )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        for key, value in (
            ('endpointId', self.endpoint_id),
            ('method', self.method),
            ('url', self.url),
        ):
            if value:
                result[key] = value
        if self.headers:
            result['headers'] = dict(self.headers)
        if self.params:
            result['params'] = dict(self.params)
        result['body'] = self.body
        if self.extract_variables:
            result['extractVariables'] = [r.to_dict() for r in self.extract_variables]
        return result


@dataclass
class DelayStep(FlowStep):
    step_type: ClassVar[StepType] = StepType.DELAY

    # None means the executor's default (DEFAULT_DELAY_MS unless configured)
    delay_ms: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DelayStep':
        delay = _pick(data, 'delayMs', 'delay_ms', 'delay')
        if delay is not None:
            try:
                delay = int(delay)
            except (TypeError, ValueError):
                raise InvalidFlowError(f"Invalid delay: {delay!r}")
            if delay < 0:
                raise InvalidFlowError(f"Delay must not be negative: {delay}")
        return cls(**cls._common_from_dict(data), delay_ms=delay)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.delay_ms is not None:
            result['delayMs'] = self.delay_ms
        return result


@dataclass
class ConditionStep(FlowStep):
    step_type: ClassVar[StepType] = StepType.CONDITION

    condition: Optional[str] = None
    result_variable: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConditionStep':
        return cls(
            **cls._common_from_dict(data),
            condition=_pick(data, 'condition'),
            result_variable=_pick(data, 'resultVariable', 'result_variable'),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.condition:
            result['condition'] = self.condition
        if self.result_variable:
            result['resultVariable'] = self.result_variable
        return result


@dataclass
class LogStep(FlowStep):
    step_type: ClassVar[StepType] = StepType.LOG

    message: str = ''
    level: str = 'info'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LogStep':
        level = str(_pick(data, 'level', default='info')).lower()
        if level == 'warning':
            level = 'warn'
        if level not in LOG_LEVELS:
            raise InvalidFlowError(f"Invalid log level: {level}")
        return cls(
            **cls._common_from_dict(data),
            message=str(_pick(data, 'message', default='')),
            level=level,
        )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['message'] = self.message
        result['level'] = self.level
        return result


STEP_CLASSES: Dict[StepType, Type[FlowStep]] = {
    StepType.REQUEST: RequestStep,
    StepType.DELAY: DelayStep,
    StepType.CONDITION: ConditionStep,
    StepType.LOG: LogStep,
}


def step_from_dict(data: Dict[str, Any]) -> FlowStep:
    """
    Build a typed step from its JSON definition.

    Steps without a `type` are request steps (older flow definitions).

    Raises:
        UnknownStepTypeError: If `type` is not a known step kind
        InvalidFlowError: If the definition is malformed
    """
    if not isinstance(data, dict):
        raise InvalidFlowError(f"Step definition must be an object, got {type(data).__name__}")

    raw_type = data.get('type') or StepType.REQUEST.value
    try:
        step_type = StepType(str(raw_type).lower())
    except ValueError:
        raise UnknownStepTypeError(raw_type, data.get('id'))

    return STEP_CLASSES[step_type].from_dict(data)


# =============================================================================
# FLOW
# =============================================================================

@dataclass
class Flow:
    """
    Named, ordered, mutable collection of steps.

    Mutations (add/update/delete/move) keep step ids unique and advance
    `updated_at`. The runner only reads flows.
    """
    id: str
    name: str
    description: Optional[str] = None
    steps: List[FlowStep] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    tags: List[str] = field(default_factory=list)

    def __post_init__(self):
        seen = set()
        for step in self.steps:
            if step.id in seen:
                raise InvalidFlowError(f"Duplicate step id in flow {self.id}: {step.id}")
            seen.add(step.id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Flow':
        if not isinstance(data, dict):
            raise InvalidFlowError("Flow definition must be an object")
        steps = data.get('steps') or []
        if not isinstance(steps, list):
            raise InvalidFlowError("Flow steps must be a list")

        created_at = _parse_timestamp(_pick(data, 'createdAt', 'created_at'))
        return cls(
            id=str(_pick(data, 'id', default=None) or generate_id('f_')),
            name=_pick(data, 'name', default='Untitled Flow'),
            description=_pick(data, 'description'),
            steps=[step_from_dict(s) for s in steps],
            created_at=created_at,
            updated_at=_parse_timestamp(_pick(data, 'updatedAt', 'updated_at', default=created_at)),
            tags=list(_pick(data, 'tags', default=[])),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'name': self.name,
            'steps': [s.to_dict() for s in self.steps],
            'createdAt': self.created_at.isoformat(),
            'updatedAt': self.updated_at.isoformat(),
        }
        if self.description:
            result['description'] = self.description
        if self.tags:
            result['tags'] = list(self.tags)
        return result

    @property
    def step_ids(self) -> List[str]:
        return [s.id for s in self.steps]

    def get_step(self, step_id: str) -> Optional[FlowStep]:
        return next((s for s in self.steps if s.id == step_id), None)

    def _index_of(self, step_id: str) -> int:
        for idx, step in enumerate(self.steps):
            if step.id == step_id:
                return idx
        return -1

    def _touch(self):
        # Strictly increasing even when the clock has not moved.
        self.updated_at = max(_utcnow(), self.updated_at + timedelta(microseconds=1))

    def add_step(self, step: FlowStep, index: Optional[int] = None) -> FlowStep:
        """
        Add a step (appended unless index is given).

        Raises:
            InvalidFlowError: If a step with the same id already exists
        """
        if self.get_step(step.id) is not None:
            raise InvalidFlowError(f"Duplicate step id in flow {self.id}: {step.id}")

        if index is None:
            self.steps.append(step)
        else:
            self.steps.insert(index, step)
        self._touch()
        logger.debug(f"Added step {step.id} to flow {self.id}")
        return step

    def update_step(self, step_id: str, **changes) -> Optional[FlowStep]:
        """
        Replace fields of a step. Returns the updated step, or None if missing.

        Raises:
            InvalidFlowError: On unknown fields or an id clash
        """
        idx = self._index_of(step_id)
        if idx == -1:
            logger.warning(f"Step not found for update: {step_id} (flow {self.id})")
            return None

        new_id = changes.get('id', step_id)
        if new_id != step_id and self.get_step(new_id) is not None:
            raise InvalidFlowError(f"Duplicate step id in flow {self.id}: {new_id}")

        try:
            updated = dataclasses.replace(self.steps[idx], **changes)
        except TypeError as e:
            raise InvalidFlowError(f"Invalid step update for {step_id}: {e}")

        self.steps[idx] = updated
        self._touch()
        return updated

    def delete_step(self, step_id: str) -> bool:
        idx = self._index_of(step_id)
        if idx == -1:
            logger.warning(f"Step not found for deletion: {step_id} (flow {self.id})")
            return False

        del self.steps[idx]
        self._touch()
        return True

    def move_step(self, step_id: str, new_index: int) -> bool:
        """Move a step to a new position (clamped to the list bounds)."""
        idx = self._index_of(step_id)
        if idx == -1:
            return False

        step = self.steps.pop(idx)
        new_index = max(0, min(new_index, len(self.steps)))
        self.steps.insert(new_index, step)
        self._touch()
        return True


# =============================================================================
# RUN RESULT
# =============================================================================

@dataclass
class StepOutcome:
    """What an executor hands back to the runner on success"""
    output: Any = None


@dataclass
class RunResult:
    """
    Outcome of one run.

    A stopped run is neither successful nor failed: `success` is False,
    `stopped` is True and `error` is None.
    """
    flow_id: str
    success: bool
    error: Optional[EngineError] = None
    stopped: bool = False
    statuses: Dict[str, StepStatus] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'flow_id': self.flow_id,
            'success': self.success,
            'stopped': self.stopped,
            'error': self.error.to_dict() if self.error else None,
            'statuses': {k: v.value for k, v in self.statuses.items()},
            'outputs': self.outputs,
        }
