"""
Job state machine.

Transitions are named by trigger. Each trigger has exactly one source and
one target state:

- CLAIM    pending    -> processing  (attempts += 1)
- SUCCEED  processing -> completed
- RETRY    processing -> pending     (available_at deferred by backoff)
- BURY     processing -> dead
- REQUEUE  dead       -> pending     (attempts reset to 0)
- RECOVER  processing -> pending     (crash recovery, no backoff)

Anything else is rejected with ``InvalidTransitionError``.
"""

from dataclasses import dataclass

from queuectl.constants import JobState, Trigger
from queuectl.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Transition:
    """A legal edge of the state machine."""

    trigger: Trigger
    source: JobState
    target: JobState


TRANSITIONS: dict[Trigger, Transition] = {
    t.trigger: t
    for t in (
        Transition(Trigger.CLAIM, JobState.PENDING, JobState.PROCESSING),
        Transition(Trigger.SUCCEED, JobState.PROCESSING, JobState.COMPLETED),
        Transition(Trigger.RETRY, JobState.PROCESSING, JobState.PENDING),
        Transition(Trigger.BURY, JobState.PROCESSING, JobState.DEAD),
        Transition(Trigger.REQUEUE, JobState.DEAD, JobState.PENDING),
        Transition(Trigger.RECOVER, JobState.PROCESSING, JobState.PENDING),
    )
}


def get_transition(trigger: Trigger) -> Transition:
    """Look up the edge for a trigger."""
    return TRANSITIONS[Trigger(trigger)]


def ensure_transition(trigger: Trigger, current: JobState) -> Transition:
    """
    Validate a trigger against the job's current state.

    Args:
        trigger: The trigger to apply.
        current: The job's current state.

    Returns:
        The matching transition.

    Raises:
        InvalidTransitionError: If the trigger does not start from ``current``.
    """
    transition = get_transition(trigger)
    if transition.source != current:
        raise InvalidTransitionError(str(trigger), str(current))
    return transition


def failure_trigger(attempts: int, max_retries: int) -> Trigger:
    """
    Decide what a failed attempt leads to.

    Args:
        attempts: Post-claim attempt count.
        max_retries: The job's retry budget.

    Returns:
        RETRY while ``attempts < max_retries``, BURY otherwise.
    """
    return Trigger.RETRY if attempts < max_retries else Trigger.BURY


def outcome_trigger(success: bool, attempts: int, max_retries: int) -> Trigger:
    """Map an execution outcome to the trigger that records it."""
    if success:
        return Trigger.SUCCEED
    return failure_trigger(attempts, max_retries)
