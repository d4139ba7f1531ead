"""
Flow Engine - Ordered, cancellable execution of API request flows

Runs a declarative list of typed steps (request, delay, condition, log)
against a live backend, threading variables from one step to the next.
"""

from apiflow.flow_engine.conditions import ConditionEvaluator
from apiflow.flow_engine.errors import (
    ConditionEvaluationError,
    EngineError,
    FlowAlreadyRunningError,
    InvalidFlowError,
    RequestExecutionError,
    StepExecutionError,
    UnknownStepTypeError,
    VariableExtractionError,
)
from apiflow.flow_engine.events import EventRecorder, FlowEvent, FlowEventType
from apiflow.flow_engine.executor import FlowRunner
from apiflow.flow_engine.models import (
    ConditionStep,
    DelayStep,
    ExtractionRule,
    Flow,
    FlowStep,
    LogStep,
    RequestStep,
    RunResult,
    StepStatus,
    StepType,
)
from apiflow.flow_engine.step_processor import ExecutionContext, StepOutcome, default_executors
from apiflow.flow_engine.variable_resolver import MISSING, VariableResolver, interpolate, resolve_path

__all__ = [
    'FlowRunner',
    'ConditionEvaluator',
    'VariableResolver',
    'interpolate',
    'resolve_path',
    'MISSING',
    'Flow',
    'FlowStep',
    'RequestStep',
    'DelayStep',
    'ConditionStep',
    'LogStep',
    'ExtractionRule',
    'StepType',
    'StepStatus',
    'RunResult',
    'StepOutcome',
    'ExecutionContext',
    'default_executors',
    'FlowEvent',
    'FlowEventType',
    'EventRecorder',
    'EngineError',
    'FlowAlreadyRunningError',
    'InvalidFlowError',
    'UnknownStepTypeError',
    'RequestExecutionError',
    'ConditionEvaluationError',
    'VariableExtractionError',
    'StepExecutionError',
]
