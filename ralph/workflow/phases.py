"""Workflow phase state machine using the transitions library.

Phases move only along explicit triggers; the current phase is persisted
in workflow.json after every transition.

Usage:
    from ralph.workflow.phases import transition

    transition(store, Phase.IMPLEMENT, reason="tests written")
"""

import logging
from typing import Callable

from transitions import Machine, MachineError

from ralph.lib.constants import Phase
from ralph.state.locking import workflow_lock
from ralph.state.store import StateStore

logger = logging.getLogger(__name__)

STATES = [p.value for p in Phase]

_ACTIVE_PHASES = [p.value for p in Phase if p is not Phase.IDLE]

TRANSITIONS = [
    {"trigger": "begin_story", "source": "idle", "dest": "author-tests"},
    {"trigger": "tests_authored", "source": "author-tests", "dest": "implement"},
    {"trigger": "build_done", "source": "implement", "dest": "validate"},

    # Validation loop: failures go back to implement until the guard escalates
    {"trigger": "validation_failed", "source": "validate", "dest": "implement"},
    {"trigger": "validation_passed", "source": "validate", "dest": "cleanup"},
    {"trigger": "skip_cleanup", "source": "validate", "dest": "finalize"},

    {"trigger": "cleanup_done", "source": "cleanup", "dest": "finalize"},
    {"trigger": "story_done", "source": "finalize", "dest": "idle"},

    # Rollback or explicit abandon
    {"trigger": "abort_story", "source": _ACTIVE_PHASES, "dest": "idle"},
]


class InvalidPhaseTransition(Exception):
    """Raised when a phase change is not allowed from the current phase."""

    def __init__(self, from_phase: str, to_phase: Phase):
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(f"Invalid phase transition: {from_phase} -> {to_phase.value}")


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """(source, dest) -> trigger name. First trigger wins for a pair."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        sources = t["source"] if isinstance(t["source"], list) else [t["source"]]
        for source in sources:
            lookup.setdefault((source, t["dest"]), t["trigger"])
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


class PhaseMachine:
    """Phase FSM bound to the workflow.json record."""

    def __init__(self, store: StateStore, on_transition: Callable[[str, str, str], None] | None = None):
        self.store = store
        self.on_transition = on_transition

        initial = store.load_workflow().phase
        if initial not in STATES:
            logger.warning(f"[PHASE] unknown phase '{initial}', defaulting to idle")
            initial = Phase.IDLE.value

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_phase = event.transition.source
        to_phase = event.transition.dest
        trigger = event.event.name

        workflow = self.store.load_workflow()
        workflow.phase = self.state
        if self.state == Phase.IDLE.value:
            workflow.current_story_id = None
        self.store.save_workflow(workflow)
        logger.info(f"[PHASE] {from_phase} -> {to_phase} ({trigger})")

        if self.on_transition:
            self.on_transition(from_phase, to_phase, trigger)

    def can(self, trigger: str) -> bool:
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        return self.machine.get_triggers(self.state)


def transition(store: StateStore, to_phase: Phase, reason: str = "", lock_timeout: float = 30) -> None:
    """Move the workflow to to_phase via its trigger.

    Self-transition is a no-op.

    Raises:
        InvalidPhaseTransition: if no trigger leads from the current phase
    """
    with workflow_lock(store.state_dir, lock_timeout):
        transition_locked(store, to_phase, reason)


def transition_locked(store: StateStore, to_phase: Phase, reason: str = "") -> None:
    """transition() for callers already holding the workflow lock."""
    fsm = PhaseMachine(store)
    current = fsm.state

    if current == to_phase.value:
        logger.debug(f"[PHASE] already in {current}, no-op")
        return

    trigger = TRIGGER_FOR.get((current, to_phase.value))
    if trigger is None:
        raise InvalidPhaseTransition(current, to_phase)

    reason_str = f" ({reason})" if reason else ""
    logger.info(f"[PHASE] requesting {current} -> {to_phase.value}{reason_str}")
    try:
        getattr(fsm, trigger)()
    except MachineError as e:
        raise InvalidPhaseTransition(current, to_phase) from e


def get_phase(store: StateStore) -> Phase:
    return Phase(store.load_workflow().phase)


def can_transition(store: StateStore, to_phase: Phase) -> bool:
    current = store.load_workflow().phase
    if current == to_phase.value:
        return True
    return (current, to_phase.value) in TRIGGER_FOR
