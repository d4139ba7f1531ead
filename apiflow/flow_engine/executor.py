"""
Flow Runner - Main orchestrator for flow execution

Responsibilities:
- Single-flight: at most one active run per runner
- Iterate through steps in order
- Evaluate skip conditions
- Dispatch steps to executors
- Track per-step statuses
- Emit lifecycle events
- Cooperative stop at step boundaries
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional

from apiflow.flow_engine.conditions import ConditionEvaluator
from apiflow.flow_engine.errors import (
    EngineError,
    FlowAlreadyRunningError,
    StepExecutionError,
    UnknownStepTypeError,
)
from apiflow.flow_engine.events import EventDispatcher, FlowEvent, FlowEventType, Listener
from apiflow.flow_engine.models import DEFAULT_DELAY_MS, Flow, FlowStep, RunResult, StepOutcome, StepStatus, StepType
from apiflow.flow_engine.step_processor import (
    ExecutionContext,
    StepExecutor,
    default_executors,
    default_log_sink,
    maybe_await,
)

logger = logging.getLogger(__name__)


class FlowRunner:
    """
    Runs flows against the collaborators it was built with.

    Usage:
        runner = FlowRunner(variable_store=store, http_client=HttpClient())
        runner.subscribe(lambda event: print(event.type))
        result = await runner.run(flow)
    """

    def __init__(
        self,
        variable_store: Any,
        http_client: Any,
        endpoint_catalog: Any = None,
        history: Any = None,
        executors: Optional[Dict[StepType, StepExecutor]] = None,
        log_sink: Callable[[str, str], Any] = default_log_sink,
        evaluator: Optional[ConditionEvaluator] = None,
        default_delay_ms: int = DEFAULT_DELAY_MS,
    ):
        """
        Args:
            variable_store: Object with snapshot() and set(name, value)
            http_client: Object with async execute(HttpRequest)
            endpoint_catalog: Object with resolve(endpoint_id), optional
            history: Object with record(request, response=, error=), optional
            executors: Step kind -> executor table (defaults to default_executors())
            log_sink: Callable(level, message) used by log steps
            evaluator: Condition evaluator for skip conditions and condition steps
            default_delay_ms: Wait for delay steps without delayMs
        """
        self.variable_store = variable_store
        self.http_client = http_client
        self.endpoint_catalog = endpoint_catalog
        self.history = history
        self.executors = executors if executors is not None else default_executors(default_delay_ms)
        self.log_sink = log_sink
        self.evaluator = evaluator or ConditionEvaluator()

        self._events = EventDispatcher()
        # Guards the running check-and-set; Flask may call from several threads
        self._lock = threading.Lock()
        self._running = False
        self._active_flow: Optional[Flow] = None
        self._stop_requested = False
        self._statuses: Dict[str, StepStatus] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_flow(self) -> Optional[Flow]:
        return self._active_flow

    def get_statuses(self) -> Dict[str, StepStatus]:
        """Copy of the step id -> status map of the current (or last) run."""
        return dict(self._statuses)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self._events.subscribe(listener)

    def stop(self) -> bool:
        """
        Request a cooperative stop.

        The step in flight finishes; no further step starts.

        Returns:
            True if a run was active, False when idle
        """
        with self._lock:
            if not self._running:
                return False
            self._stop_requested = True
        logger.info(f"Stop requested for flow {self._active_flow.id if self._active_flow else '?'}")
        return True

    async def run(self, flow: Flow) -> RunResult:
        """
        Execute a flow.

        Args:
            flow: Flow to run (never mutated)

        Returns:
            RunResult with final statuses and step outputs

        Raises:
            FlowAlreadyRunningError: If another run is active (no state changed)
        """
        with self._lock:
            if self._running:
                active_id = self._active_flow.id if self._active_flow else None
                logger.warning(f"Rejected run of flow {flow.id}: flow {active_id} is running")
                raise FlowAlreadyRunningError(flow.id, active_id)
            self._running = True
            self._active_flow = flow
            self._stop_requested = False
            self._statuses = {step.id: StepStatus.PENDING for step in flow.steps}

        try:
            return await self._execute_flow(flow)
        finally:
            with self._lock:
                self._running = False
                self._active_flow = None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute_flow(self, flow: Flow) -> RunResult:
        outputs: Dict[str, Any] = {}
        logger.info(f"Starting flow {flow.id} ({flow.name}) with {len(flow.steps)} steps")
        await self._emit(FlowEventType.STARTED, flow, data={'name': flow.name, 'step_ids': flow.step_ids})

        for index, step in enumerate(flow.steps):
            if self._stop_requested:
                logger.info(f"Flow {flow.id} stopped before step {step.id} ({index}/{len(flow.steps)})")
                await self._emit(FlowEventType.STOPPED, flow, data={'next_step_id': step.id})
                return RunResult(flow.id, success=False, stopped=True,
                                 statuses=self.get_statuses(), outputs=outputs)

            bindings = await maybe_await(self.variable_store.snapshot())

            # A condition that is blank after interpolation does not skip
            if step.skip_condition and self.evaluator.evaluate_safely(step.skip_condition, bindings, step.id,
                                                                      blank_result=False):
                logger.info(f"Skipping step {step.id} ({step.name}): {step.skip_condition!r}")
                self._statuses[step.id] = StepStatus.SKIPPED
                await self._emit(FlowEventType.STEP_SKIPPED, flow, step, StepStatus.SKIPPED,
                                 data={'condition': step.skip_condition})
                continue

            self._statuses[step.id] = StepStatus.RUNNING
            await self._emit(FlowEventType.STEP_STARTED, flow, step, StepStatus.RUNNING)

            try:
                outcome = await self._execute_step(flow, step, bindings)
            except EngineError as e:
                error = e
            except Exception as e:
                logger.error(f"Unexpected error in step {step.id}: {e}", exc_info=True)
                error = StepExecutionError(f"Step {step.name or step.id} failed: {e}", step.id, cause=e)
            else:
                outputs[step.id] = outcome.output
                self._statuses[step.id] = StepStatus.SUCCESS
                await self._emit(FlowEventType.STEP_COMPLETED, flow, step, StepStatus.SUCCESS,
                                 data={'output': outcome.output})
                continue

            error.step_id = error.step_id or step.id
            return await self._fail(flow, step, error, outputs)

        logger.info(f"Flow {flow.id} completed")
        await self._emit(FlowEventType.COMPLETED, flow, data={'success': True})
        return RunResult(flow.id, success=True, statuses=self.get_statuses(), outputs=outputs)

    async def _execute_step(self, flow: Flow, step: FlowStep, bindings: Dict[str, Any]) -> StepOutcome:
        executor = self.executors.get(step.step_type)
        if executor is None:
            step_type = step.step_type.value if step.step_type else type(step).__name__
            raise UnknownStepTypeError(step_type, step.id)

        logger.debug(f"Executing step {step.id} ({step.step_type.value}) of flow {flow.id}")
        context = ExecutionContext(
            flow_id=flow.id,
            bindings=bindings,
            variable_store=self.variable_store,
            http_client=self.http_client,
            endpoint_catalog=self.endpoint_catalog,
            history=self.history,
            log_sink=self.log_sink,
            evaluator=self.evaluator,
        )
        outcome = await executor.execute(step, context)
        return outcome if isinstance(outcome, StepOutcome) else StepOutcome(output=outcome)

    async def _fail(self, flow: Flow, step: FlowStep, error: EngineError, outputs: Dict[str, Any]) -> RunResult:
        logger.error(f"Flow {flow.id} failed at step {step.id}: {error}")
        self._statuses[step.id] = StepStatus.ERROR
        await self._emit(FlowEventType.STEP_ERROR, flow, step, StepStatus.ERROR, error=error)
        await self._emit(FlowEventType.ERROR, flow, step, error=error)
        await self._emit(FlowEventType.COMPLETED, flow, data={'success': False})
        return RunResult(flow.id, success=False, error=error, statuses=self.get_statuses(), outputs=outputs)

    async def _emit(
        self,
        event_type: FlowEventType,
        flow: Flow,
        step: Optional[FlowStep] = None,
        status: Optional[StepStatus] = None,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[EngineError] = None,
    ):
        await self._events.emit(FlowEvent(
            type=event_type,
            flow_id=flow.id,
            step_id=step.id if step else None,
            status=status,
            data=data or {},
            error=error,
        ))
