"""Persistence for guest sessions, turns, session state, snapshots and events."""

from __future__ import annotations

import abc
import asyncio
import uuid
from typing import Any, Dict, List, Optional

from soulaware.models import (
    AnalyticsEvent,
    ChatRole,
    ConversationTurn,
    GuestSession,
    PromptMode,
    PurposeSnapshot,
    SafetyEvent,
    SafetyLevel,
    SessionState,
    utc_now_iso,
)


class StateStoreError(RuntimeError):
    """Raised when the backing store cannot read or write; fatal for the request."""


class Repository(abc.ABC):
    @abc.abstractmethod
    async def get_or_create_session(self, guest_id: str) -> GuestSession: ...

    @abc.abstractmethod
    async def find_session(self, guest_id: str) -> Optional[GuestSession]: ...

    @abc.abstractmethod
    async def create_message(self, session_id: str, role: ChatRole, content: str, mode: PromptMode = "coach") -> ConversationTurn: ...

    @abc.abstractmethod
    async def list_messages(self, session_id: str, limit: Optional[int] = None) -> List[ConversationTurn]:
        """Turns oldest first; with `limit`, only the most recent `limit` turns."""

    @abc.abstractmethod
    async def count_user_turns(self, session_id: str) -> int: ...

    @abc.abstractmethod
    async def get_or_create_session_state(self, session_id: str) -> SessionState: ...

    @abc.abstractmethod
    async def update_session_state(self, session_id: str, patch: Dict[str, Any]) -> SessionState: ...

    @abc.abstractmethod
    async def create_snapshot(self, session_id: str, mission: str, values: List[str], next_actions: List[str]) -> PurposeSnapshot: ...

    @abc.abstractmethod
    async def get_latest_snapshot(self, session_id: str) -> Optional[PurposeSnapshot]: ...

    @abc.abstractmethod
    async def get_snapshot_for_guest(self, snapshot_id: str, guest_id: str) -> Optional[PurposeSnapshot]: ...

    @abc.abstractmethod
    async def create_safety_event(self, guest_id: str, session_id: str, level: SafetyLevel, trigger_text: str) -> SafetyEvent: ...

    @abc.abstractmethod
    async def track_event(self, guest_id: str, event_name: str, metadata: Optional[Dict[str, Any]] = None) -> AnalyticsEvent: ...

    @abc.abstractmethod
    async def list_events_since(self, event_name: str, since_iso: str) -> List[AnalyticsEvent]: ...

    @abc.abstractmethod
    async def clear_session(self, guest_id: str) -> None: ...

    @abc.abstractmethod
    async def delete_guest(self, guest_id: str) -> None: ...

    async def list_recent_messages(self, session_id: str, limit: int) -> List[ConversationTurn]:
        return await self.list_messages(session_id, limit=limit)

    def stats(self) -> Dict[str, int]:
        return {}


class InMemoryRepository(Repository):
    """Process-scoped store; one instance lives on `app.state` for the app lifetime."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self.sessions: Dict[str, GuestSession] = {}
        self.messages: List[ConversationTurn] = []
        self.states: Dict[str, SessionState] = {}
        self.snapshots: List[PurposeSnapshot] = []
        self.safety_events: List[SafetyEvent] = []
        self.analytics: List[AnalyticsEvent] = []

    async def get_or_create_session(self, guest_id: str) -> GuestSession:
        async with self._lock:
            now = utc_now_iso()
            existing = await self.find_session(guest_id)
            if existing is not None:
                existing.updated_at = now
                return existing
            session = GuestSession(id=str(uuid.uuid4()), guest_id=guest_id, created_at=now, updated_at=now)
            self.sessions[session.id] = session
            return session

    async def find_session(self, guest_id: str) -> Optional[GuestSession]:
        return next((s for s in self.sessions.values() if s.guest_id == guest_id), None)

    async def create_message(self, session_id: str, role: ChatRole, content: str, mode: PromptMode = "coach") -> ConversationTurn:
        turn = ConversationTurn(
            id=str(uuid.uuid4()),
            session_id=session_id,
            role=role,
            content=content,
            mode=mode,
            created_at=utc_now_iso(),
        )
        async with self._lock:
            self.messages.append(turn)
            session = self.sessions.get(session_id)
            if session:
                session.updated_at = turn.created_at
        return turn

    async def list_messages(self, session_id: str, limit: Optional[int] = None) -> List[ConversationTurn]:
        turns = [m for m in self.messages if m.session_id == session_id]
        if limit is not None:
            return turns[-limit:] if limit > 0 else []
        return turns

    async def count_user_turns(self, session_id: str) -> int:
        return sum(1 for m in self.messages if m.session_id == session_id and m.role == "user")

    async def get_or_create_session_state(self, session_id: str) -> SessionState:
        async with self._lock:
            state = self.states.get(session_id)
            if state is None:
                state = SessionState(session_id=session_id)
                self.states[session_id] = state
            return state

    async def update_session_state(self, session_id: str, patch: Dict[str, Any]) -> SessionState:
        async with self._lock:
            current = self.states.get(session_id) or SessionState(session_id=session_id)
            updated = current.apply_patch(patch)
            self.states[session_id] = updated
            return updated

    async def create_snapshot(self, session_id: str, mission: str, values: List[str], next_actions: List[str]) -> PurposeSnapshot:
        snap = PurposeSnapshot(
            id=str(uuid.uuid4()),
            session_id=session_id,
            mission=mission,
            values=list(values),
            next_actions=list(next_actions),
            created_at=utc_now_iso(),
        )
        async with self._lock:
            self.snapshots.append(snap)
        return snap

    async def get_latest_snapshot(self, session_id: str) -> Optional[PurposeSnapshot]:
        for snap in reversed(self.snapshots):
            if snap.session_id == session_id:
                return snap
        return None

    async def get_snapshot_for_guest(self, snapshot_id: str, guest_id: str) -> Optional[PurposeSnapshot]:
        snap = next((s for s in self.snapshots if s.id == snapshot_id), None)
        if snap is None:
            return None
        session = self.sessions.get(snap.session_id)
        if session is None or session.guest_id != guest_id:
            return None
        return snap

    async def create_safety_event(self, guest_id: str, session_id: str, level: SafetyLevel, trigger_text: str) -> SafetyEvent:
        event = SafetyEvent(
            id=str(uuid.uuid4()),
            guest_id=guest_id,
            session_id=session_id,
            level=level,
            trigger_text=trigger_text,
            created_at=utc_now_iso(),
        )
        async with self._lock:
            self.safety_events.append(event)
        return event

    async def track_event(self, guest_id: str, event_name: str, metadata: Optional[Dict[str, Any]] = None) -> AnalyticsEvent:
        event = AnalyticsEvent(
            id=str(uuid.uuid4()),
            guest_id=guest_id,
            event_name=event_name,
            metadata=dict(metadata or {}),
            created_at=utc_now_iso(),
        )
        async with self._lock:
            self.analytics.append(event)
        return event

    async def list_events_since(self, event_name: str, since_iso: str) -> List[AnalyticsEvent]:
        # ISO-8601 UTC strings order lexicographically
        return [e for e in self.analytics if e.event_name == event_name and e.created_at >= since_iso]

    async def clear_session(self, guest_id: str) -> None:
        async with self._lock:
            session = await self.find_session(guest_id)
            if session is None:
                return
            self.messages = [m for m in self.messages if m.session_id != session.id]
            self.snapshots = [s for s in self.snapshots if s.session_id != session.id]
            self.safety_events = [e for e in self.safety_events if e.guest_id != guest_id]
            self.states.pop(session.id, None)
            session.updated_at = utc_now_iso()

    async def delete_guest(self, guest_id: str) -> None:
        async with self._lock:
            session = await self.find_session(guest_id)
            sid = session.id if session else None
            self.messages = [m for m in self.messages if m.session_id != sid]
            self.snapshots = [s for s in self.snapshots if s.session_id != sid]
            self.safety_events = [e for e in self.safety_events if e.guest_id != guest_id]
            self.analytics = [e for e in self.analytics if e.guest_id != guest_id]
            if sid is not None:
                self.states.pop(sid, None)
                self.sessions.pop(sid, None)

    def stats(self) -> Dict[str, int]:
        return {
            "sessionCount": len(self.sessions),
            "messageCount": len(self.messages),
            "snapshotCount": len(self.snapshots),
            "analyticsEventCount": len(self.analytics),
        }
