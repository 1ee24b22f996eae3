"""Progress narration for one sync invocation.

ProgressReporter is the single sink both the session negotiator and the
calendar page write to. It tracks the invocation's state machine:

    IDLE -> INITIALIZING -> AUTHENTICATING -> NAVIGATING -> PARSING -> SAVING -> COMPLETE
                 \\______________\\______________\\____________\\__________\\--> FAILED

A phase opens with one or more ``started`` events and closes with exactly one
``success``; the next phase may only open once the current one has closed.
Exactly one terminal event (step=complete, or status=error) ends the stream.
"""

from collections.abc import Callable
from enum import Enum

from src.portal_sync.logging import get_logger
from src.portal_sync.models import ProgressEvent, ProgressStatus, ProgressStep

log = get_logger(__name__)

ProgressSink = Callable[[ProgressEvent], None]


class PipelineState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    AUTHENTICATING = "authenticating"
    NAVIGATING = "navigating"
    PARSING = "parsing"
    SAVING = "saving"
    COMPLETE = "complete"
    FAILED = "failed"


STEP_STATES: dict[ProgressStep, PipelineState] = {
    ProgressStep.INIT: PipelineState.INITIALIZING,
    ProgressStep.AUTH: PipelineState.AUTHENTICATING,
    ProgressStep.NAVIGATE: PipelineState.NAVIGATING,
    ProgressStep.FIND_EXAMS: PipelineState.PARSING,
    ProgressStep.SAVE: PipelineState.SAVING,
    ProgressStep.COMPLETE: PipelineState.COMPLETE,
}
STATE_STEPS = {state: step for step, state in STEP_STATES.items()}

PHASE_ORDER: list[PipelineState] = [
    PipelineState.IDLE,
    PipelineState.INITIALIZING,
    PipelineState.AUTHENTICATING,
    PipelineState.NAVIGATING,
    PipelineState.PARSING,
    PipelineState.SAVING,
    PipelineState.COMPLETE,
]

TERMINAL_STATES = frozenset({PipelineState.COMPLETE, PipelineState.FAILED})


class ProgressOrderError(RuntimeError):
    """A progress event was emitted out of phase order."""


def _discard(event: ProgressEvent) -> None:
    pass


class ProgressReporter:
    """Ordered, terminating progress stream for a single invocation."""

    def __init__(self, sink: ProgressSink | None = None) -> None:
        self.sink = sink or _discard
        self.state = PipelineState.IDLE
        self.transitions: list[PipelineState] = [PipelineState.IDLE]
        self.events: list[ProgressEvent] = []
        self._phase_open = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def current_step(self) -> ProgressStep:
        return STATE_STEPS.get(self.state, ProgressStep.ERROR)

    def started(self, step: ProgressStep, message: str) -> None:
        target = self._state_for(step)
        if target is not self.state:
            self._advance(target)
        elif not self._phase_open:
            raise ProgressOrderError(f"Phase {step.value!r} already finished")
        self._phase_open = True
        self._emit(step, ProgressStatus.STARTED, message)

    def success(self, step: ProgressStep, message: str) -> None:
        target = self._state_for(step)
        if target is not self.state or not self._phase_open:
            raise ProgressOrderError(
                f"Cannot finish {step.value!r} while in state {self.state.value!r}"
            )
        self._phase_open = False
        self._emit(step, ProgressStatus.SUCCESS, message)

    def complete(self, message: str) -> None:
        self._advance(PipelineState.COMPLETE)
        self._emit(ProgressStep.COMPLETE, ProgressStatus.SUCCESS, message)

    def fail(self, message: str) -> None:
        """Emit the terminal error event for the phase that was running.

        A second terminal event is never emitted; later calls are logged and dropped.
        """
        if self.is_terminal:
            log.warning("progress_after_terminal", state=self.state.value, message=message)
            return
        step = self.current_step
        self._phase_open = False
        self._set_state(PipelineState.FAILED)
        self._emit(step, ProgressStatus.ERROR, message)

    def _state_for(self, step: ProgressStep) -> PipelineState:
        state = STEP_STATES.get(step)
        if state is None or state is PipelineState.COMPLETE:
            raise ProgressOrderError(f"Step {step.value!r} is not a pipeline phase")
        return state

    def _advance(self, target: PipelineState) -> None:
        if self.is_terminal:
            raise ProgressOrderError(f"Invocation already ended in {self.state.value!r}")
        if self._phase_open:
            raise ProgressOrderError(
                f"Cannot enter {target.value!r} before {self.state.value!r} succeeded"
            )
        current = PHASE_ORDER.index(self.state)
        if PHASE_ORDER.index(target) != current + 1:
            raise ProgressOrderError(
                f"Cannot move from {self.state.value!r} to {target.value!r}"
            )
        self._set_state(target)

    def _set_state(self, state: PipelineState) -> None:
        self.state = state
        self.transitions.append(state)

    def _emit(self, step: ProgressStep, status: ProgressStatus, message: str) -> None:
        event = ProgressEvent(step=step, status=status, message=message)
        self.events.append(event)
        log.info("progress_event", step=step.value, status=status.value, message=message)
        self.sink(event)
