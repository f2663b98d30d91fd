"""Phase enum and progress constants for the update session."""

from enum import Enum


NO_PROGRESS = -1
"""Progress sentinel: percentage tracking does not apply to the current phase."""


class PhaseEnum(str, Enum):
    """Update session phases.

    State transitions:
    Idle → Clearing → Installing → Completed
              ↓    ↘      ↓  ↑          ↓
            Failed  Idle  AwaitingConfirmation → Idle (rejected)

    Completed and Failed accept a new install request (→ Clearing).
    """

    IDLE = "Idle"
    CLEARING = "Clearing"
    INSTALLING = "Installing"
    AWAITING_CONFIRMATION = "AwaitingConfirmation"
    FAILED = "Failed"
    COMPLETED = "Completed"


# A pipeline occupies the service while in one of these phases
ACTIVE_PHASES = frozenset(
    {PhaseEnum.CLEARING, PhaseEnum.INSTALLING, PhaseEnum.AWAITING_CONFIRMATION}
)

# Phases that accept a new install request
INSTALLABLE_PHASES = frozenset(
    {PhaseEnum.IDLE, PhaseEnum.COMPLETED, PhaseEnum.FAILED}
)
