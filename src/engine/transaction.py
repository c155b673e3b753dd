"""All-or-nothing execution of ledger and sale operations."""

from __future__ import annotations

import copy
import functools
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Protocol, TypeVar

from engine.clock import Clock, wall_clock
from engine.events import Event, Receipt
from esr_token.errors import InvariantViolation, PreconditionViolation

LOGGER = logging.getLogger("esr_ico.transaction")

F = TypeVar("F", bound=Callable[..., Any])


class Participant(Protocol):
    state: Any

    def check_invariants(self) -> None:
        """Raise InvariantViolation if the current state is inconsistent."""


@dataclass
class Transaction:
    operation: str
    now: int
    events: list[Event] = field(default_factory=list)


class TransactionManager:
    """Stages participant state per operation and commits only on success.

    At the outermost ``atomic`` entry every registered participant's state is
    replaced by a deep-copied draft. The operation mutates the drafts; once it
    returns, each participant validates its invariants. Success keeps the
    drafts and publishes the buffered events. Any exception reinstates the
    untouched originals and drops the events. Nested ``atomic`` calls join the
    running transaction, so a cross-component call commits or fails as one.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock: Clock = clock or wall_clock
        self.events: list[Event] = []
        self._participants: list[Participant] = []
        self._subscribers: list[Callable[[Event], None]] = []
        self._active: Transaction | None = None

    @property
    def active(self) -> bool:
        return self._active is not None

    @property
    def now(self) -> int:
        """Timestamp of the running operation, or the clock when idle."""
        if self._active is None:
            return int(self.clock())
        return self._active.now

    def register(self, participant: Participant) -> None:
        if self._active is not None:
            raise RuntimeError("Cannot register a participant inside a transaction")
        if participant not in self._participants:
            self._participants.append(participant)

    def subscribe(self, callback: Callable[[Event], None]) -> None:
        self._subscribers.append(callback)

    def emit(self, name: str, **args: Any) -> Event:
        if self._active is None:
            raise RuntimeError("Events can only be emitted inside a transaction")
        event = Event(name=name, args=args)
        self._active.events.append(event)
        return event

    @contextmanager
    def atomic(self, operation: str) -> Iterator[Transaction]:
        if self._active is not None:
            yield self._active
            return

        tx = Transaction(operation=operation, now=int(self.clock()))
        originals = [(participant, participant.state) for participant in self._participants]
        for participant, state in originals:
            participant.state = copy.deepcopy(state)
        self._active = tx
        try:
            yield tx
            for participant in self._participants:
                participant.check_invariants()
        except BaseException as exc:
            for participant, state in originals:
                participant.state = state
            self._active = None
            self._log_rollback(operation, exc)
            raise
        self._active = None
        self._publish(tx)

    def _publish(self, tx: Transaction) -> None:
        self.events.extend(tx.events)
        for event in tx.events:
            for callback in self._subscribers:
                try:
                    callback(event)
                except Exception as exc:
                    LOGGER.warning(
                        "Event subscriber failed on %s: %s", event.name, exc
                    )

    @staticmethod
    def _log_rollback(operation: str, exc: BaseException) -> None:
        if isinstance(exc, PreconditionViolation):
            LOGGER.info("Rejected %s: %s (%s)", operation, exc.code, exc.message)
        elif isinstance(exc, InvariantViolation):
            LOGGER.error(
                "Invariant violation in %s: %s (%s)", operation, exc.code, exc.message
            )
        elif isinstance(exc, Exception):
            LOGGER.exception("Unexpected failure in %s, rolled back", operation)


def transactional(method: F) -> F:
    """Run a component method atomically and wrap its outcome in a Receipt.

    The decorated method's owner must expose ``transactions`` and
    ``component`` attributes.
    """

    @functools.wraps(method)
    def wrapper(self: Any, ctx: Any, *args: Any, **kwargs: Any) -> Receipt:
        operation = f"{self.component}.{method.__name__}"
        with self.transactions.atomic(operation) as tx:
            mark = len(tx.events)
            result = method(self, ctx, *args, **kwargs)
            logs = tuple(tx.events[mark:])
        return Receipt(operation=operation, logs=logs, result=result)

    return wrapper  # type: ignore[return-value]
