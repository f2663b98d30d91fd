"""Confirmation monitor: answers updates that wait for the user."""

import logging
import threading
from typing import Callable, Optional

from ota_updater.client.client import UpdaterClient
from ota_updater.errors import NoPendingUpdateError, ServiceConnectionError
from ota_updater.models.session import PendingUpdate, SessionSnapshot
from ota_updater.models.status import PhaseEnum

# decide(pending) -> True (install), False (discard), None (leave it to someone else)
Decider = Callable[[PendingUpdate], Optional[bool]]


class ConfirmationMonitor:
    """Calls decide() once per confirmation episode and sends the answer.

    pending_detected is an edge flag: it is set when AwaitingConfirmation is
    first observed and reset only when the phase leaves it, so a single
    episode is never answered twice even if it is observed repeatedly.
    """

    def __init__(self, client: UpdaterClient, decide: Decider):
        self.logger = logging.getLogger("ota_updater.monitor")
        self.client = client
        self.decide = decide
        self.pending_detected = False
        self.decisions: list[bool] = []

    def observe(self, snapshot: SessionSnapshot) -> None:
        """Feed one observed snapshot through the edge detector."""
        if snapshot.phase != PhaseEnum.AWAITING_CONFIRMATION:
            self.pending_detected = False
            return
        if self.pending_detected:
            return
        self.pending_detected = True
        self.handle_pending()

    def handle_pending(self) -> Optional[bool]:
        """Fetch the pending update, ask decide() and send the answer.

        Returns the decision sent, or None if nothing was sent (no pending
        update any more, or decide() abstained).
        """
        try:
            pending = self.client.get_pending_update()
        except NoPendingUpdateError:
            self.logger.info("Pending update already resolved")
            return None

        self.logger.info(f"Update {pending.version} from {pending.source} awaits confirmation")
        accept = self.decide(pending)
        if accept is None:
            self.logger.info("Decision deferred")
            return None

        try:
            message = self.client.confirm_update(accept)
        except NoPendingUpdateError:
            # Answered elsewhere between the query and our confirmation
            self.logger.info("Pending update resolved by another client")
            return None
        self.logger.info(message)
        self.decisions.append(accept)
        return accept

    def run_push(
        self,
        stop_event: Optional[threading.Event] = None,
        reconnect_delay: float = 1.0,
    ) -> None:
        """React to transitions delivered by the watch stream until stopped.

        A lost connection is retried every reconnect_delay seconds; the
        baseline of the new stream goes through the same edge detector, so an
        episode already seen is not answered again. A stream the service
        dropped for backlog overflow is retried the same way. Returns when
        stopped or when the service ends the stream on shutdown.
        """
        stop_event = stop_event or threading.Event()
        self.pending_detected = False
        while not stop_event.is_set():
            try:
                for snapshot in self.client.watch(cancel_event=stop_event):
                    self.observe(snapshot)
                return
            except ServiceConnectionError as e:
                self.logger.warning(f"Watch stream lost, reconnecting: {e}")
                stop_event.wait(reconnect_delay)

    def run_polling(
        self,
        interval: float = 2.0,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        """Poll the status every interval seconds until stop_event is set."""
        stop_event = stop_event or threading.Event()
        self.pending_detected = False
        while not stop_event.is_set():
            try:
                snapshot = self.client.get_status()
            except ServiceConnectionError as e:
                self.logger.warning(f"Status poll failed: {e}")
            else:
                self.observe(snapshot)
            stop_event.wait(interval)
