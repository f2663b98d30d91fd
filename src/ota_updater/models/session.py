"""Session state models shared by the service, the API and the client."""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ota_updater.models.status import NO_PROGRESS, PhaseEnum


class PendingUpdate(BaseModel):
    """Update that passed pre-flight checks and waits for accept/reject."""

    model_config = ConfigDict(frozen=True)

    version: str = Field(..., description="Version announced by the package")
    changelog: str = Field(..., description="Full CHANGELOG text of the package")
    source: str = Field(..., description="File path or URL the package came from")


class SessionSnapshot(BaseModel):
    """Immutable view of the update session at one instant.

    Built only by the state machine; every watcher and every status query
    receives one of these. The validator rejects combinations that must never
    be observable, so an inconsistent snapshot cannot exist.
    """

    model_config = ConfigDict(frozen=True)

    sequence: int = Field(
        default=0, ge=0, description="Monotonic change counter (SSE event id)"
    )
    phase: PhaseEnum = Field(..., description="Current lifecycle phase")
    details: str = Field(default="", description="Human-readable activity description")
    progress: int = Field(
        default=NO_PROGRESS,
        ge=NO_PROGRESS,
        le=100,
        description="Percentage completion (0-100) or -1 if not applicable",
    )
    pending_update: Optional[PendingUpdate] = Field(
        default=None, description="Present only while awaiting confirmation"
    )

    @model_validator(mode="after")
    def check_consistency(self) -> "SessionSnapshot":
        """Enforce the pending-update and progress-sentinel invariants."""
        awaiting = self.phase == PhaseEnum.AWAITING_CONFIRMATION
        if awaiting and self.pending_update is None:
            raise ValueError("AwaitingConfirmation requires a pending update")
        if not awaiting and self.pending_update is not None:
            raise ValueError(
                f"Pending update not allowed in phase {self.phase.value}"
            )
        if self.phase in (PhaseEnum.IDLE, PhaseEnum.AWAITING_CONFIRMATION) and (
            self.progress != NO_PROGRESS
        ):
            raise ValueError(f"Phase {self.phase.value} does not track progress")
        return self

    @property
    def progress_or_none(self) -> Optional[int]:
        """Progress percentage, or None when not applicable."""
        return None if self.progress == NO_PROGRESS else self.progress
