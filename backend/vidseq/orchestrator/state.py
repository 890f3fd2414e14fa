"""State machine constants and transition logic for the pipeline orchestrator.

A run moves init -> batching, then loops fetching -> normalizing ->
batch_concat once per batch, then final_assembly -> done. ``failed`` is
reachable only from init (empty timeline) and final_assembly (nothing
survived, or the final merge failed).
"""

from typing import Dict, FrozenSet

# Pipeline states in execution order
PIPELINE_STATES = {
    "init": "Timeline received, not yet validated",
    "batching": "Partitioning timeline into batches",
    "fetching": "Downloading the current batch's sources",
    "normalizing": "Re-encoding the current batch's sources",
    "batch_concat": "Joining the current batch's clips",
    "final_assembly": "Joining batch outputs into the final file",
    "done": "Pipeline finished with an artifact",
    "failed": "Pipeline ended without an artifact",
}

# Allowed transitions; batch_concat loops back to fetching for the next batch
STATE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "init": frozenset({"batching", "failed"}),
    "batching": frozenset({"fetching"}),
    "fetching": frozenset({"normalizing"}),
    "normalizing": frozenset({"batch_concat"}),
    "batch_concat": frozenset({"fetching", "final_assembly"}),
    "final_assembly": frozenset({"done", "failed"}),
    "done": frozenset(),
    "failed": frozenset(),
}

TERMINAL_STATES = frozenset({"done", "failed"})


def can_transition(current: str, target: str) -> bool:
    """Check whether moving from current to target is allowed.

    Args:
        current: Current pipeline state
        target: Requested next state

    Returns:
        True if the transition is in STATE_TRANSITIONS
    """
    return target in STATE_TRANSITIONS.get(current, frozenset())


class PipelineStateMachine:
    """Tracks one run's state and rejects out-of-order transitions."""

    def __init__(self):
        self.state = "init"
        self.history: list[str] = ["init"]

    def advance(self, target: str) -> None:
        """Move to target.

        Raises:
            ValueError: If the transition is not allowed
        """
        if not can_transition(self.state, target):
            raise ValueError(f"Invalid pipeline transition: {self.state} -> {target}")
        self.state = target
        self.history.append(target)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
