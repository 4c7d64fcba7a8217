"""Kill confirmation workflow and signal delivery."""

import logging
import signal
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import psutil

logger = logging.getLogger(__name__)

CONFIRM_KEYS = frozenset({"y", "Y"})
CANCEL_KEYS = frozenset({"n", "N", "escape"})


class SignalKind(Enum):
    """Signals the user can send to a process."""

    TERMINATE = "SIGTERM"
    KILL = "SIGKILL"
    INTERRUPT = "SIGINT"

    @property
    def description(self) -> str:
        """Signal name with a short note, as shown in the confirmation dialog."""
        return {
            SignalKind.TERMINATE: "SIGTERM (graceful)",
            SignalKind.KILL: "SIGKILL (force)",
            SignalKind.INTERRUPT: "SIGINT (interrupt)",
        }[self]


class SignalOutcome(Enum):
    """Result of a signal delivery."""

    SENT = "sent"
    FAILED = "failed"
    NOT_FOUND = "not_found"


class ProcessControl(Protocol):
    def send(self, pid: int, kind: SignalKind) -> SignalOutcome: ...


class PsutilProcessControl:
    """Delivers signals with psutil."""

    def send(self, pid: int, kind: SignalKind) -> SignalOutcome:
        """
        Send ``kind`` to ``pid`` and report how the delivery went.

        Refusals from the OS, including psutil's refusal to signal PID 0,
        are reported as FAILED rather than raised.
        """
        try:
            proc = psutil.Process(pid)
            if kind is SignalKind.TERMINATE:
                proc.terminate()
            elif kind is SignalKind.KILL:
                proc.kill()
            else:
                proc.send_signal(signal.SIGINT)
        except psutil.NoSuchProcess:
            logger.info("%s to PID %d: process not found", kind.value, pid)
            return SignalOutcome.NOT_FOUND
        except (psutil.AccessDenied, OSError, ValueError) as exc:
            logger.warning("%s to PID %d failed: %s", kind.value, pid, exc)
            return SignalOutcome.FAILED
        logger.info("Sent %s to PID %d", kind.value, pid)
        return SignalOutcome.SENT


@dataclass(slots=True, frozen=True)
class KillConfirmation:
    """A kill request waiting for the user's answer."""

    pid: int
    name: str
    signal: SignalKind


class ActionWorkflow:
    """
    Two-state machine: idle, or waiting for a yes/no on one KillConfirmation.

    The pid and name are frozen when the request is made, so the answer acts
    on the same process even if the table reorders in the meantime.
    """

    def __init__(self, control: ProcessControl | None = None) -> None:
        """
        Initialize the ActionWorkflow.

        Args:
            control: Signal sender. Default PsutilProcessControl.
        """
        self._control = control or PsutilProcessControl()
        self.pending: KillConfirmation | None = None

    @property
    def is_pending(self) -> bool:
        """Whether a confirmation is waiting for an answer."""
        return self.pending is not None

    def request(self, record: object | None, kind: SignalKind) -> bool:
        """Start a confirmation for ``record``; no-op without a record or when already pending."""
        if record is None or self.pending is not None:
            return False
        self.pending = KillConfirmation(pid=record.pid, name=record.name, signal=kind)
        return True

    def answer(self, key: str) -> str | None:
        """
        Feed one key to a pending confirmation.

        Returns the status message to show, or None when the key is ignored.
        """
        if self.pending is None:
            return None
        if key in CONFIRM_KEYS:
            confirm = self.pending
            self.pending = None
            return self._execute(confirm)
        if key in CANCEL_KEYS:
            self.pending = None
            return "Kill cancelled"
        return None

    def _execute(self, confirm: KillConfirmation) -> str:
        outcome = self._control.send(confirm.pid, confirm.signal)
        name = confirm.signal.value
        if outcome is SignalOutcome.SENT:
            return f"Sent {name} to PID {confirm.pid}"
        if outcome is SignalOutcome.NOT_FOUND:
            return f"Process {confirm.pid} not found"
        return f"Failed to send {name} to PID {confirm.pid}"
