"""Claim / verify session state machine.

A session owns at most one in-flight verification. Transitions are
serialized under a lock; the running worker is a future on a single-thread
executor paired with its own cancellation event.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import List, Optional

from ..errors import AlreadyInProgress, FacePassError, PermissionDenied, SessionBusy
from .types import (
    SessionState,
    StatusEvent,
    StatusListener,
    VerificationRequest,
    VerificationStatus,
)
from .worker import VerificationWorker

logger = logging.getLogger(__name__)


class VerificationSession:
    """Exclusive-use verification session.

    Idle -> Claimed via claim(); Claimed -> Verifying via verify_start();
    back to Claimed when the run ends; Claimed -> Idle via release().
    """

    def __init__(self, worker: VerificationWorker):
        self.worker = worker

        self._lock = threading.Lock()
        self._claimed = False
        self._verifying = False
        self._future: Optional[Future] = None
        self._cancel: Optional[threading.Event] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="facepass-verify")
        self._worker_thread = threading.local()

        self._listeners: List[StatusListener] = []
        self._listeners_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._lock:
            if not self._claimed:
                return SessionState.IDLE
            if self._verifying:
                return SessionState.VERIFYING
            return SessionState.CLAIMED

    @property
    def is_verifying(self) -> bool:
        return self._verifying

    def claim(self):
        """Take exclusive use of the session.

        Raises:
            SessionBusy: if already claimed
        """
        with self._lock:
            if self._claimed:
                raise SessionBusy("Device is already claimed")
            self._claimed = True
        logger.info("Session claimed")

    def release(self):
        """Give up the claim, cancelling and waiting for any running worker.

        The claim is dropped before the worker is stopped, so a competing
        verify_start sees an unclaimed session.
        """
        with self._lock:
            if not self._claimed:
                return
            self._claimed = False
            future, cancel = self._future, self._cancel
        self._stop(future, cancel)
        logger.info("Session released")

    def verify_start(self, request: VerificationRequest):
        """Start a verification run in the background and return at once.

        Raises:
            PermissionDenied: if the session is not claimed
            AlreadyInProgress: if a run is already in flight
        """
        with self._lock:
            if not self._claimed:
                raise PermissionDenied("Device must be claimed before verifying")
            if self._verifying:
                raise AlreadyInProgress("Verification already in progress")

            cancel = threading.Event()
            self._verifying = True
            self._cancel = cancel
            self._future = self._executor.submit(self._run, request, cancel)

    def verify_stop(self):
        """Cancel the running worker and wait until it has stopped.

        Does nothing when no worker is running.
        """
        with self._lock:
            future, cancel = self._future, self._cancel
        self._stop(future, cancel)

    def _stop(self, future: Optional[Future], cancel: Optional[threading.Event]):
        if future is None:
            return
        if cancel is not None:
            cancel.set()

        # A listener calling back from the worker thread cannot wait for itself
        if getattr(self._worker_thread, "active", False):
            return

        wait([future])
        with self._lock:
            if self._future is future:
                self._future = None

    def shutdown(self):
        """Stop any run, drop the claim and stop the executor."""
        with self._lock:
            self._claimed = False
            future, cancel = self._future, self._cancel
        self._stop(future, cancel)
        self._executor.shutdown(wait=True)
        logger.debug("Session shut down")

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_listener(self, listener: StatusListener):
        """Register a callback for status events."""
        with self._listeners_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener):
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, event: StatusEvent):
        with self._listeners_lock:
            listeners = self._listeners.copy()

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Status listener error: {e}", exc_info=True)

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    def _run(self, request: VerificationRequest, cancel: threading.Event):
        """Worker task: exactly one terminal event per run."""
        self._worker_thread.active = True
        terminal: Optional[StatusEvent] = None
        try:
            terminal = self.worker.run(request, cancel, on_event=self._emit)
        except FacePassError as e:
            logger.error(f"Verification failed: {e}")
            terminal = StatusEvent(VerificationStatus.ERROR, str(e))
        except Exception as e:
            logger.error(f"Unexpected verification failure: {e}", exc_info=True)
            terminal = StatusEvent(VerificationStatus.ERROR, str(e) or type(e).__name__)
        finally:
            with self._lock:
                self._verifying = False
                if self._cancel is cancel:
                    self._cancel = None

        try:
            self._emit(terminal)
        finally:
            self._worker_thread.active = False
        return terminal
