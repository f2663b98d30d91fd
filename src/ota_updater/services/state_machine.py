"""Update lifecycle state machine: the only writer of session state."""

import asyncio
import logging
from typing import Optional

from ota_updater.errors import BusyError, InvalidTransitionError, NoPendingUpdateError
from ota_updater.models.session import PendingUpdate, SessionSnapshot
from ota_updater.models.status import (
    ACTIVE_PHASES,
    INSTALLABLE_PHASES,
    NO_PROGRESS,
    PhaseEnum,
)
from ota_updater.services.notification import NotificationChannel


# Allowed phase changes; same-phase detail/progress updates are handled separately
TRANSITIONS: dict[PhaseEnum, frozenset[PhaseEnum]] = {
    PhaseEnum.IDLE: frozenset({PhaseEnum.CLEARING}),
    PhaseEnum.CLEARING: frozenset(
        {PhaseEnum.INSTALLING, PhaseEnum.FAILED, PhaseEnum.IDLE}
    ),
    PhaseEnum.INSTALLING: frozenset(
        {PhaseEnum.AWAITING_CONFIRMATION, PhaseEnum.COMPLETED, PhaseEnum.FAILED}
    ),
    PhaseEnum.AWAITING_CONFIRMATION: frozenset(
        {PhaseEnum.INSTALLING, PhaseEnum.IDLE, PhaseEnum.FAILED}
    ),
    PhaseEnum.COMPLETED: frozenset({PhaseEnum.CLEARING}),
    PhaseEnum.FAILED: frozenset({PhaseEnum.CLEARING}),
}


class UpdateStateMachine:
    """Validates and applies session transitions, then publishes the result.

    All methods are synchronous and must run on the service event loop: a
    transition and its notification happen in one step, so no other command
    can observe or interleave with a half-applied change.
    """

    def __init__(self, channel: NotificationChannel):
        self.logger = logging.getLogger("ota_updater.state_machine")
        self.channel = channel
        self._source = ""
        self._decision: Optional[asyncio.Future] = None
        self._snapshot = SessionSnapshot(phase=PhaseEnum.IDLE)
        self.channel.publish(self._snapshot)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        """Current immutable session snapshot."""
        return self._snapshot

    @property
    def phase(self) -> PhaseEnum:
        return self._snapshot.phase

    @property
    def is_active(self) -> bool:
        """True while a pipeline occupies the service."""
        return self._snapshot.phase in ACTIVE_PHASES

    def pending_update(self) -> PendingUpdate:
        """Return the pending update of the current episode.

        Raises:
            NoPendingUpdateError: If not awaiting confirmation
        """
        pending = self._snapshot.pending_update
        if pending is None:
            raise NoPendingUpdateError("No pending update awaiting confirmation")
        return pending

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def check_installable(self) -> None:
        """Raises BusyError unless a new install request may start."""
        if self.phase not in INSTALLABLE_PHASES:
            raise BusyError(f"Operation already in progress: {self.phase.value}")

    def begin_install(self, source: str) -> None:
        """Idle/Completed/Failed → Clearing.

        Raises:
            BusyError: If a pipeline is already active
        """
        self.check_installable()
        self._source = source
        self._apply(PhaseEnum.CLEARING, details=source)

    def preflight_passed(self) -> None:
        """Clearing → Installing."""
        self._apply(PhaseEnum.INSTALLING, details=self._source, progress=0)

    def nothing_to_install(self, reason: str) -> None:
        """Clearing → Idle when the source offered no package."""
        self._apply(PhaseEnum.IDLE, details=reason)

    def await_confirmation(self, pending: PendingUpdate) -> asyncio.Future:
        """Installing → AwaitingConfirmation.

        Returns:
            Future resolved with True (accepted) or False (rejected), or
            cancelled if the episode ends by failure
        """
        self._require(PhaseEnum.INSTALLING)
        decision = asyncio.get_running_loop().create_future()
        self._apply(
            PhaseEnum.AWAITING_CONFIRMATION,
            details=f"{pending.version} ({pending.source})",
            pending_update=pending,
        )
        self._decision = decision
        return decision

    def confirm(self, accept: bool) -> str:
        """Resolve the current episode.

        accept: AwaitingConfirmation → Installing (pipeline resumes)
        reject: AwaitingConfirmation → Idle (package discarded)

        Raises:
            NoPendingUpdateError: If not awaiting confirmation; nothing changes
        """
        if self.phase != PhaseEnum.AWAITING_CONFIRMATION:
            raise NoPendingUpdateError(
                "Cannot confirm update: no update is awaiting confirmation"
            )
        decision, self._decision = self._decision, None

        if accept:
            self._apply(PhaseEnum.INSTALLING, details=self._source, progress=0)
            message = "Update accepted, installation will proceed"
        else:
            self._apply(PhaseEnum.IDLE, details="Update rejected by user")
            message = "Update rejected"

        if decision is not None and not decision.done():
            decision.set_result(accept)
        return message

    def update_details(self, details: str) -> None:
        """Change the details text without changing phase (Clearing/Installing)."""
        if self.phase not in (PhaseEnum.CLEARING, PhaseEnum.INSTALLING):
            raise InvalidTransitionError(
                f"Details are fixed in phase {self.phase.value}"
            )
        if details != self._snapshot.details:
            self._publish(self._snapshot.model_copy(update={"details": details}))

    def report_progress(self, progress: int) -> None:
        """Update Installing progress; publishes only when the value changes."""
        self._require(PhaseEnum.INSTALLING)
        progress = max(0, min(100, int(progress)))
        if progress != self._snapshot.progress:
            self.logger.debug(f"Install progress: {progress}%")
            self._publish(self._snapshot.model_copy(update={"progress": progress}))

    def complete(self, deployment: str) -> None:
        """Installing → Completed."""
        self._apply(
            PhaseEnum.COMPLETED,
            details=f"{self._source} installed as {deployment}",
            progress=100,
        )

    def fail(self, error: str) -> None:
        """Clearing/Installing/AwaitingConfirmation → Failed.

        Ends a confirmation episode too: the pending update is cleared and the
        pipeline waiting on the decision is cancelled.
        """
        progress = NO_PROGRESS
        if self.phase == PhaseEnum.INSTALLING:
            progress = self._snapshot.progress
        decision, self._decision = self._decision, None

        self._apply(PhaseEnum.FAILED, details=f"{self._source}: {error}", progress=progress)

        if decision is not None and not decision.done():
            decision.cancel()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, phase: PhaseEnum) -> None:
        if self.phase != phase:
            raise InvalidTransitionError(
                f"Expected phase {phase.value}, current phase is {self.phase.value}"
            )

    def _apply(
        self,
        phase: PhaseEnum,
        details: str = "",
        progress: int = NO_PROGRESS,
        pending_update: Optional[PendingUpdate] = None,
    ) -> None:
        current = self.phase
        if phase not in TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Transition {current.value} → {phase.value} not allowed"
            )

        snapshot = SessionSnapshot(
            sequence=self._snapshot.sequence + 1,
            phase=phase,
            details=details,
            progress=progress,
            pending_update=pending_update,
        )
        self.logger.info(
            f"Phase {current.value} → {phase.value}"
            + (f": {details}" if details else "")
        )
        self._publish(snapshot)

    def _publish(self, snapshot: SessionSnapshot) -> None:
        if snapshot.sequence <= self._snapshot.sequence:
            snapshot = snapshot.model_copy(
                update={"sequence": self._snapshot.sequence + 1}
            )
        self._snapshot = snapshot
        self.channel.publish(snapshot)
