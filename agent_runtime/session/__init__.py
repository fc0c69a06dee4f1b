"""Session storage: in-memory and SQLite backends."""

import copy
import json
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import aiosqlite

from agent_runtime.config import get_config
from agent_runtime.events import Event
from agent_runtime.exceptions import SessionNotFoundError, StaleSessionError
from agent_runtime.logging import get_logger
from agent_runtime.state import extract_state_delta, merge_state, trim_temp_delta

log = get_logger(__name__)


@dataclass
class Session:
    """A conversation session."""

    id: str
    app_name: str
    user_id: str
    state: dict[str, Any] = field(default_factory=dict)
    events: list[Event] = field(default_factory=list)
    last_update_time: float = 0.0


class BaseSessionService(ABC):
    """Base class for session services."""

    @abstractmethod
    async def create_session(
        self,
        *,
        app_name: str,
        user_id: str,
        state: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> Session:
        """Create a session; ``app:`` and ``user:`` keys go to the shared scopes."""

    @abstractmethod
    async def get_session(
        self,
        *,
        app_name: str,
        user_id: str,
        session_id: str,
        num_recent_events: int | None = None,
        after_timestamp: float | None = None,
    ) -> Session | None:
        """Get a session with merged app/user/session state, or None."""

    @abstractmethod
    async def list_sessions(self, *, app_name: str, user_id: str) -> list[Session]:
        """List sessions without their events."""

    @abstractmethod
    async def delete_session(self, *, app_name: str, user_id: str, session_id: str) -> None:
        pass

    async def append_event(self, session: Session, event: Event) -> Event:
        """Append ``event`` to ``session`` and apply its state delta.

        Partial events are returned untouched. ``temp:`` keys never leave the
        invocation, so they are removed from the delta before it is stored.
        """
        if event.partial:
            return event
        event.actions.state_delta = trim_temp_delta(event.actions.state_delta)
        session.state.update(event.actions.state_delta)
        session.events.append(event)
        return event

    @staticmethod
    def _filter_events(
        events: list[Event],
        num_recent_events: int | None,
        after_timestamp: float | None,
    ) -> list[Event]:
        if after_timestamp is not None:
            events = [event for event in events if event.timestamp >= after_timestamp]
        if num_recent_events is not None:
            events = events[-num_recent_events:] if num_recent_events > 0 else []
        return events


class InMemorySessionService(BaseSessionService):
    """Sessions kept in process memory; intended for tests and prototypes."""

    def __init__(self) -> None:
        # app -> user -> session id -> session
        self._sessions: dict[str, dict[str, dict[str, Session]]] = {}
        self._app_state: dict[str, dict[str, Any]] = {}
        self._user_state: dict[str, dict[str, dict[str, Any]]] = {}

    def _merged_copy(self, session: Session) -> Session:
        copied = copy.deepcopy(session)
        copied.state = merge_state(
            self._app_state.get(session.app_name, {}),
            self._user_state.get(session.app_name, {}).get(session.user_id, {}),
            copied.state,
        )
        return copied

    async def create_session(self, *, app_name, user_id, state=None, session_id=None) -> Session:
        session_id = (session_id or "").strip() or str(uuid.uuid4())
        if session_id in self._sessions.get(app_name, {}).get(user_id, {}):
            raise ValueError(f"Session with id {session_id} already exists.")

        deltas = extract_state_delta(state)
        self._app_state.setdefault(app_name, {}).update(deltas.app)
        self._user_state.setdefault(app_name, {}).setdefault(user_id, {}).update(deltas.user)

        session = Session(
            id=session_id,
            app_name=app_name,
            user_id=user_id,
            state=deltas.session,
            last_update_time=time.time(),
        )
        self._sessions.setdefault(app_name, {}).setdefault(user_id, {})[session_id] = session
        log.info("Created new session", session_id=session_id, app_name=app_name, user_id=user_id)
        return self._merged_copy(session)

    async def get_session(
        self,
        *,
        app_name,
        user_id,
        session_id,
        num_recent_events=None,
        after_timestamp=None,
    ) -> Session | None:
        session = self._sessions.get(app_name, {}).get(user_id, {}).get(session_id)
        if session is None:
            return None
        copied = self._merged_copy(session)
        copied.events = self._filter_events(copied.events, num_recent_events, after_timestamp)
        return copied

    async def list_sessions(self, *, app_name, user_id) -> list[Session]:
        sessions = []
        for session in self._sessions.get(app_name, {}).get(user_id, {}).values():
            copied = self._merged_copy(session)
            copied.events = []
            sessions.append(copied)
        return sessions

    async def delete_session(self, *, app_name, user_id, session_id) -> None:
        self._sessions.get(app_name, {}).get(user_id, {}).pop(session_id, None)

    async def append_event(self, session: Session, event: Event) -> Event:
        if event.partial:
            return event

        stored = self._sessions.get(session.app_name, {}).get(session.user_id, {}).get(session.id)
        if stored is None:
            raise SessionNotFoundError(session.id)
        if stored.last_update_time > session.last_update_time:
            raise StaleSessionError(session.id, session.last_update_time, stored.last_update_time)

        await super().append_event(session, event)
        session.last_update_time = event.timestamp

        deltas = extract_state_delta(event.actions.state_delta)
        self._app_state.setdefault(session.app_name, {}).update(deltas.app)
        self._user_state.setdefault(session.app_name, {}).setdefault(session.user_id, {}).update(deltas.user)
        stored.state.update(deltas.session)
        stored.events.append(copy.deepcopy(event))
        stored.last_update_time = event.timestamp
        return event


class SqliteSessionService(BaseSessionService):
    """Sessions persisted in SQLite through aiosqlite."""

    def __init__(self, db_path: Path | str | None = None):
        """Initialize the service.

        Args:
            db_path: Optional database path override; defaults to ``session.path``
        """
        if db_path is None:
            self.db_path = Path(get_config().session.path).expanduser()
        else:
            self.db_path = Path(db_path).expanduser()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db: aiosqlite.Connection | None = None

    async def _ensure_db(self) -> aiosqlite.Connection:
        """Ensure database is initialized."""
        if self._db is None:
            self._db = await aiosqlite.connect(str(self.db_path))
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    app_name TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    id TEXT NOT NULL,
                    state TEXT NOT NULL DEFAULT '{}',
                    create_time REAL NOT NULL,
                    update_time REAL NOT NULL,
                    PRIMARY KEY (app_name, user_id, id)
                )
            """)
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT NOT NULL,
                    app_name TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    session_id TEXT NOT NULL,
                    invocation_id TEXT NOT NULL,
                    timestamp REAL NOT NULL,
                    event_data TEXT NOT NULL,
                    PRIMARY KEY (id, app_name, user_id, session_id)
                )
            """)
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS app_states (
                    app_name TEXT PRIMARY KEY,
                    state TEXT NOT NULL DEFAULT '{}',
                    update_time REAL NOT NULL
                )
            """)
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS user_states (
                    app_name TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    state TEXT NOT NULL DEFAULT '{}',
                    update_time REAL NOT NULL,
                    PRIMARY KEY (app_name, user_id)
                )
            """)
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_session ON events(app_name, user_id, session_id, timestamp)"
            )
            await self._db.commit()
        return self._db

    async def _load_app_state(self, db: aiosqlite.Connection, app_name: str) -> dict[str, Any]:
        async with db.execute("SELECT state FROM app_states WHERE app_name = ?", (app_name,)) as cursor:
            row = await cursor.fetchone()
        return json.loads(row[0]) if row else {}

    async def _load_user_state(self, db: aiosqlite.Connection, app_name: str, user_id: str) -> dict[str, Any]:
        async with db.execute(
            "SELECT state FROM user_states WHERE app_name = ? AND user_id = ?",
            (app_name, user_id),
        ) as cursor:
            row = await cursor.fetchone()
        return json.loads(row[0]) if row else {}

    async def _update_scoped_state(
        self,
        db: aiosqlite.Connection,
        app_name: str,
        user_id: str,
        app_delta: dict[str, Any],
        user_delta: dict[str, Any],
        now: float,
    ) -> None:
        if app_delta:
            app_state = await self._load_app_state(db, app_name)
            app_state.update(app_delta)
            await db.execute(
                "INSERT OR REPLACE INTO app_states (app_name, state, update_time) VALUES (?, ?, ?)",
                (app_name, json.dumps(app_state), now),
            )
        if user_delta:
            user_state = await self._load_user_state(db, app_name, user_id)
            user_state.update(user_delta)
            await db.execute(
                "INSERT OR REPLACE INTO user_states (app_name, user_id, state, update_time) VALUES (?, ?, ?, ?)",
                (app_name, user_id, json.dumps(user_state), now),
            )

    async def create_session(self, *, app_name, user_id, state=None, session_id=None) -> Session:
        db = await self._ensure_db()
        session_id = (session_id or "").strip() or str(uuid.uuid4())

        async with db.execute(
            "SELECT 1 FROM sessions WHERE app_name = ? AND user_id = ? AND id = ?",
            (app_name, user_id, session_id),
        ) as cursor:
            if await cursor.fetchone():
                raise ValueError(f"Session with id {session_id} already exists.")

        now = time.time()
        deltas = extract_state_delta(state)
        await self._update_scoped_state(db, app_name, user_id, deltas.app, deltas.user, now)
        await db.execute(
            """
            INSERT INTO sessions (app_name, user_id, id, state, create_time, update_time)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (app_name, user_id, session_id, json.dumps(deltas.session), now, now),
        )
        await db.commit()
        log.info("Created new session", session_id=session_id, app_name=app_name, user_id=user_id)

        return Session(
            id=session_id,
            app_name=app_name,
            user_id=user_id,
            state=merge_state(
                await self._load_app_state(db, app_name),
                await self._load_user_state(db, app_name, user_id),
                deltas.session,
            ),
            last_update_time=now,
        )

    async def get_session(
        self,
        *,
        app_name,
        user_id,
        session_id,
        num_recent_events=None,
        after_timestamp=None,
    ) -> Session | None:
        db = await self._ensure_db()
        async with db.execute(
            "SELECT state, update_time FROM sessions WHERE app_name = ? AND user_id = ? AND id = ?",
            (app_name, user_id, session_id),
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None

        query = (
            "SELECT event_data FROM events WHERE app_name = ? AND user_id = ? AND session_id = ?"
        )
        params: list[Any] = [app_name, user_id, session_id]
        if after_timestamp is not None:
            query += " AND timestamp >= ?"
            params.append(after_timestamp)
        query += " ORDER BY timestamp ASC, rowid ASC"
        async with db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        events = [Event.from_dict(json.loads(event_row[0])) for event_row in rows]

        return Session(
            id=session_id,
            app_name=app_name,
            user_id=user_id,
            state=merge_state(
                await self._load_app_state(db, app_name),
                await self._load_user_state(db, app_name, user_id),
                json.loads(row[0]),
            ),
            events=self._filter_events(events, num_recent_events, None),
            last_update_time=row[1],
        )

    async def list_sessions(self, *, app_name, user_id) -> list[Session]:
        db = await self._ensure_db()
        app_state = await self._load_app_state(db, app_name)
        user_state = await self._load_user_state(db, app_name, user_id)
        async with db.execute(
            """
            SELECT id, state, update_time FROM sessions
            WHERE app_name = ? AND user_id = ?
            ORDER BY update_time DESC
            """,
            (app_name, user_id),
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            Session(
                id=row[0],
                app_name=app_name,
                user_id=user_id,
                state=merge_state(app_state, user_state, json.loads(row[1])),
                last_update_time=row[2],
            )
            for row in rows
        ]

    async def delete_session(self, *, app_name, user_id, session_id) -> None:
        db = await self._ensure_db()
        await db.execute(
            "DELETE FROM events WHERE app_name = ? AND user_id = ? AND session_id = ?",
            (app_name, user_id, session_id),
        )
        await db.execute(
            "DELETE FROM sessions WHERE app_name = ? AND user_id = ? AND id = ?",
            (app_name, user_id, session_id),
        )
        await db.commit()

    async def append_event(self, session: Session, event: Event) -> Event:
        if event.partial:
            return event

        db = await self._ensure_db()
        async with db.execute(
            "SELECT state, update_time FROM sessions WHERE app_name = ? AND user_id = ? AND id = ?",
            (session.app_name, session.user_id, session.id),
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            raise SessionNotFoundError(session.id)
        storage_update_time = row[1]
        if storage_update_time > session.last_update_time:
            raise StaleSessionError(session.id, session.last_update_time, storage_update_time)

        await super().append_event(session, event)

        deltas = extract_state_delta(event.actions.state_delta)
        await self._update_scoped_state(
            db, session.app_name, session.user_id, deltas.app, deltas.user, event.timestamp
        )
        session_state = json.loads(row[0])
        session_state.update(deltas.session)
        await db.execute(
            """
            UPDATE sessions SET state = ?, update_time = ?
            WHERE app_name = ? AND user_id = ? AND id = ?
            """,
            (json.dumps(session_state), event.timestamp, session.app_name, session.user_id, session.id),
        )
        await db.execute(
            """
            INSERT INTO events (id, app_name, user_id, session_id, invocation_id, timestamp, event_data)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.id,
                session.app_name,
                session.user_id,
                session.id,
                event.invocation_id,
                event.timestamp,
                json.dumps(event.to_dict()),
            ),
        )
        await db.commit()
        session.last_update_time = event.timestamp
        return event

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None


def create_session_service() -> BaseSessionService:
    """Build the session service selected by ``session.storage``."""
    cfg = get_config()
    if cfg.session.storage == "sqlite":
        return SqliteSessionService()
    return InMemorySessionService()
