"""
Session registry.

All conversational state lives here, keyed by connection id: rolling message
history, open negotiation records and the last completed transaction. Nothing
is shared between sessions and nothing outlives the process; destroying a
session drops its records and cancels any work still scheduled for it.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Coroutine, Optional

from personalbot.graph.conversation_state import ConversationTurn
from personalbot.graph.schemas import ServiceType

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class NegotiationStatus(str, Enum):
    NEGOTIATING = "negotiating"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class NegotiationPhase(str, Enum):
    PENDING = "pending"
    NEGOTIATING = "negotiating"
    OFFERED = "offered"
    ACCEPTED = "accepted"


@dataclass
class NegotiationRecord:
    id: str
    owner_session_id: str
    service_type: ServiceType
    requirements_text: str
    insurance_type: str = ""
    status: NegotiationStatus = NegotiationStatus.NEGOTIATING
    phase: NegotiationPhase = NegotiationPhase.PENDING
    last_offer: Optional[Any] = None
    payment: Optional[Any] = None
    renegotiation_rounds: int = 0
    created_at: int = field(default_factory=_now_ms)


@dataclass
class CompletedTransaction:
    session_id: str
    completed_at: int
    reference_id: str


@dataclass
class Session:
    session_id: str
    history: list[ConversationTurn] = field(default_factory=list)
    negotiations: dict[str, NegotiationRecord] = field(default_factory=dict)
    completed_transaction: Optional[CompletedTransaction] = None
    # Serialises inbound events for this session
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    tasks: set[asyncio.Task] = field(default_factory=set)


class SessionRegistry:
    """Per-connection state with the operations the engine needs."""

    def __init__(self, clock: Callable[[], int] = _now_ms) -> None:
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        # negotiation id -> owning session id
        self._negotiation_index: dict[str, str] = {}

    # -- lifecycle -------------------------------------------------------------

    def create_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(session_id=session_id)
            self._sessions[session_id] = session
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def is_alive(self, session_id: str) -> bool:
        return session_id in self._sessions

    def destroy_session(self, session_id: str) -> None:
        """Drop every record of the session and cancel its pending work."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        for negotiation_id, record in session.negotiations.items():
            record.status = NegotiationStatus.ABANDONED
            self._negotiation_index.pop(negotiation_id, None)
        abandoned = len(session.negotiations)
        session.negotiations.clear()
        session.history.clear()
        session.completed_transaction = None
        current = asyncio.current_task() if _loop_running() else None
        for task in list(session.tasks):
            if task is not current:
                task.cancel()
        session.tasks.clear()
        logger.info("Session %s destroyed (%d negotiation(s) abandoned)", session_id, abandoned)

    def spawn(self, session_id: str, coro: Coroutine) -> Optional[asyncio.Task]:
        """Run ``coro`` as a task owned by the session; cancelled on teardown."""
        session = self._sessions.get(session_id)
        if session is None:
            coro.close()
            return None
        task = asyncio.create_task(coro)
        session.tasks.add(task)
        task.add_done_callback(session.tasks.discard)
        return task

    # -- history ---------------------------------------------------------------

    def append_turn(self, session_id: str, turn: ConversationTurn) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.history.append(turn)

    def recent_turns(self, session_id: str, n: int) -> list[ConversationTurn]:
        session = self._sessions.get(session_id)
        if session is None or n <= 0:
            return []
        return list(session.history[-n:])

    # -- negotiations ----------------------------------------------------------

    def open_negotiation(
        self,
        session_id: str,
        service_type: ServiceType,
        requirements_text: str,
        insurance_type: str = "",
    ) -> str:
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session {session_id}")
        negotiation_id = str(uuid.uuid4())
        session.negotiations[negotiation_id] = NegotiationRecord(
            id=negotiation_id,
            owner_session_id=session_id,
            service_type=service_type,
            requirements_text=requirements_text,
            insurance_type=insurance_type,
            created_at=self._clock(),
        )
        self._negotiation_index[negotiation_id] = session_id
        return negotiation_id

    def get_negotiation(self, negotiation_id: str, session_id: Optional[str] = None) -> Optional[NegotiationRecord]:
        """Look up a record; with ``session_id`` only the owner can see it."""
        owner = self._negotiation_index.get(negotiation_id)
        if owner is None or (session_id is not None and owner != session_id):
            return None
        return self._sessions[owner].negotiations.get(negotiation_id)

    def negotiations_for(self, session_id: str) -> list[NegotiationRecord]:
        session = self._sessions.get(session_id)
        return list(session.negotiations.values()) if session else []

    def record_offer(self, negotiation_id: str, offer: Any) -> None:
        record = self.get_negotiation(negotiation_id)
        if record is None:
            raise KeyError(f"Unknown negotiation {negotiation_id}")
        record.last_offer = offer

    def close_negotiation(
        self, negotiation_id: str, status: NegotiationStatus = NegotiationStatus.COMPLETED
    ) -> None:
        owner = self._negotiation_index.pop(negotiation_id, None)
        if owner is None:
            return
        record = self._sessions[owner].negotiations.pop(negotiation_id, None)
        if record is not None:
            record.status = status

    # -- completed transactions ------------------------------------------------

    def mark_completed_transaction(self, session_id: str, reference_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.completed_transaction = CompletedTransaction(
            session_id=session_id,
            completed_at=self._clock(),
            reference_id=reference_id,
        )

    def is_suppressed(self, session_id: str, window_ms: int) -> bool:
        session = self._sessions.get(session_id)
        if session is None or session.completed_transaction is None:
            return False
        return self._clock() - session.completed_transaction.completed_at < window_ms


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True
