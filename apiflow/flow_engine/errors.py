"""
Engine errors.

Step-local errors (ConditionEvaluationError, VariableExtractionError) are
recovered where they happen and only logged. Everything else reaching the
runner ends the run with a terminal `error` step status.
"""

from typing import Any, Optional


class EngineError(Exception):
    """Base class for all flow engine errors"""

    def __init__(self, message: str, step_id: Optional[str] = None):
        self.message = message
        self.step_id = step_id
        super().__init__(self.message)

    def __str__(self):
        if self.step_id:
            return f"[step {self.step_id}] {self.message}"
        return self.message

    def to_dict(self) -> dict:
        return {
            'type': type(self).__name__,
            'message': self.message,
            'step_id': self.step_id,
        }


class FlowAlreadyRunningError(EngineError):
    """A run was requested while another run is active"""

    def __init__(self, flow_id: Optional[str] = None, active_flow_id: Optional[str] = None):
        self.flow_id = flow_id
        self.active_flow_id = active_flow_id
        message = "A flow is already running"
        if active_flow_id:
            message = f"Flow {active_flow_id} is already running"
        super().__init__(message)


class InvalidFlowError(EngineError):
    """Flow definition violates an invariant (duplicate step ids, bad fields)"""
    pass


class UnknownStepTypeError(EngineError):
    """No executor is registered for a step kind"""

    def __init__(self, step_type: Any, step_id: Optional[str] = None):
        self.step_type = step_type
        super().__init__(f"Unknown step type: {step_type}", step_id)


class RequestExecutionError(EngineError):
    """HTTP client failure inside a request step"""

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
        request: Any = None,
        response: Any = None,
    ):
        self.cause = cause
        self.request = request
        self.response = response
        super().__init__(message, step_id)

    @property
    def status(self) -> Optional[int]:
        return getattr(self.response, 'status', None)


class ConditionEvaluationError(EngineError):
    """Expression is malformed, unsafe or failed to evaluate"""

    def __init__(self, message: str, expression: Optional[str] = None, step_id: Optional[str] = None):
        self.expression = expression
        super().__init__(message, step_id)


class VariableExtractionError(EngineError):
    """Extraction path could not be resolved"""

    def __init__(self, message: str, path: Optional[str] = None, step_id: Optional[str] = None):
        self.path = path
        super().__init__(message, step_id)


class StepExecutionError(EngineError):
    """Unexpected failure raised by a step executor"""

    def __init__(self, message: str, step_id: Optional[str] = None, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message, step_id)
