"""Live session tracking driven by assistant hook events."""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Collection
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path

from ..config import settings
from ..models import (
    HistoricalSession,
    HookEventName,
    HookPayload,
    Session,
    SessionStatus,
    StateMessage,
    ToolCall,
    ToolInput,
    TrackedSubagent,
    merge_model_breakdown,
)
from .clock import Clock, elapsed_ms, utcnow
from .history import HistoryStore, RunDelta
from .pricing import PriceResolver, get_price_resolver
from .transcript import TranscriptSummary, parse_transcript

logger = logging.getLogger(__name__)

StateListener = Callable[[StateMessage], None]

_TOOL_INPUT_FIELDS = ("file_path", "command", "pattern", "description")


def project_name(cwd: str | None, session_id: str | None = None) -> str:
    """Directory name of the project, else a short session id."""
    if cwd:
        name = Path(cwd).name
        if name:
            return name
    if session_id:
        return session_id[:8]
    return "Unknown"


def _tool_input(raw: dict | None) -> ToolInput | None:
    if not raw:
        return None
    fields = {key: raw[key] for key in _TOOL_INPUT_FIELDS if isinstance(raw.get(key), str)}
    return ToolInput(**fields) if fields else None


def _usage_snapshot(session: Session) -> RunDelta:
    return RunDelta(
        tokens=session.token_breakdown(),
        cost_usd=session.cost_usd,
        model_breakdown={
            name: tokens.model_copy() for name, tokens in session.model_breakdown.items()
        },
        working_ms=session.total_working_ms,
        waiting_ms=session.total_waiting_ms,
        idle_ms=session.total_idle_ms,
    )


class SessionStore:
    """Single owner of live session state.

    Events for one session id are applied one at a time under a per-id
    lock; different ids proceed concurrently. Every applied event is
    followed by a broadcast of the derived state to subscribers.
    """

    def __init__(
        self,
        history: HistoryStore,
        pricing: PriceResolver | None = None,
        *,
        clock: Clock = utcnow,
        session_timeout_seconds: float = 300,
        stale_check_interval_seconds: float = 30,
        waiting_debounce_ms: int = 500,
        recent_tools_limit: int = 5,
        user_input_tools: Collection[str] | None = None,
    ):
        self.history = history
        self.pricing = pricing or get_price_resolver()
        self._clock = clock
        self.session_timeout = timedelta(seconds=session_timeout_seconds)
        self.stale_check_interval_seconds = stale_check_interval_seconds
        self.waiting_debounce_ms = waiting_debounce_ms
        self.recent_tools_limit = recent_tools_limit
        self.user_input_tools = frozenset(
            settings.get_user_input_tools() if user_input_tools is None else user_input_tools
        )

        self._sessions: dict[str, Session] = {}
        self._subagents: dict[tuple[str, str], TrackedSubagent] = {}
        # Usage restored at start, so a resumed run only adds its own delta to daily stats
        self._baselines: dict[str, RunDelta] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_refs: dict[str, int] = {}
        self._listeners: list[StateListener] = []
        self._sweep_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Lifecycle

    def start(self) -> None:
        """Start the periodic staleness sweep. Requires a running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def shutdown(self) -> None:
        """Stop background work and flush history to disk."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        if not self.history.flush():
            logger.error("[History] Pending history could not be saved during shutdown")
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Queries

    def get_session(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    def get_state(self) -> StateMessage:
        sessions = [s.model_copy(deep=True) for s in self._sessions.values()]
        working = sum(1 for s in sessions if s.status is SessionStatus.WORKING)
        waiting = sum(1 for s in sessions if s.status is SessionStatus.WAITING_FOR_INPUT)
        return StateMessage(
            blocked=working == 0,
            sessions=sessions,
            working=working,
            waiting_for_input=waiting,
        )

    def get_status(self) -> tuple[bool, list[Session]]:
        state = self.get_state()
        return state.blocked, state.sessions

    def get_history(self, limit: int | None = None) -> list[HistoricalSession]:
        return self.history.get_history(limit)

    def get_subagents(self, session_id: str) -> list[TrackedSubagent]:
        return [
            agent.model_copy()
            for (sid, _), agent in self._subagents.items()
            if sid == session_id
        ]

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; it immediately receives the current state.

        Returns a callable that removes the listener.
        """
        self._listeners.append(listener)
        listener(self.get_state())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Event handling

    async def handle_hook(self, payload: HookPayload) -> None:
        """Apply one hook event and broadcast the resulting state."""
        event = payload.event
        if event is None:
            logger.debug(f"Ignoring hook event {payload.hook_event_name}")
            return

        async with self._session_lock(payload.session_id):
            now = self._clock()
            if event is HookEventName.SESSION_START:
                self._on_session_start(payload, now)
            elif event is HookEventName.SESSION_END:
                await self._on_session_end(payload, now)
            elif event is HookEventName.USER_PROMPT_SUBMIT:
                self._on_user_prompt(payload, now)
            elif event is HookEventName.PRE_TOOL_USE:
                self._on_pre_tool_use(payload, now)
            elif event is HookEventName.POST_TOOL_USE:
                session = self._ensure_session(payload.session_id, payload.cwd, now)
                session.last_activity = now
                self._accumulate_tokens(session, payload)
            elif event is HookEventName.STOP:
                self._on_stop(payload, now)
            elif event is HookEventName.SUBAGENT_START:
                self._on_subagent_start(payload, now)
            elif event is HookEventName.SUBAGENT_STOP:
                await self._on_subagent_stop(payload, now)

        self._broadcast()

    async def update_session_metrics(
        self, session_id: str, cost_usd: float, input_tokens: int, output_tokens: int
    ) -> bool:
        """Set absolute usage totals reported by the status line.

        Returns False if the session is not live.
        """
        async with self._session_lock(session_id):
            session = self._sessions.get(session_id)
            if session is None:
                return False

            session.cost_usd = cost_usd
            session.input_tokens = input_tokens
            session.output_tokens = output_tokens
            session.total_tokens = input_tokens + output_tokens
            session.last_activity = self._clock()

        self._broadcast()
        return True

    async def sweep_stale_sessions(self) -> int:
        """Move sessions inactive past the timeout into history.

        Returns the number of sessions removed.
        """
        removed = 0
        for session_id in list(self._sessions):
            async with self._session_lock(session_id):
                session = self._sessions.get(session_id)
                now = self._clock()
                if session is None or now - session.last_activity <= self.session_timeout:
                    continue
                self._end_session(session, now, accrue_until=session.last_activity)
                logger.info(f"Session timed out: {session.project_name}")
                removed += 1

        if removed:
            self._broadcast()
        return removed

    # ------------------------------------------------------------------
    # Event handlers

    def _on_session_start(self, payload: HookPayload, now: datetime) -> None:
        session_id = payload.session_id
        existing = self._sessions.get(session_id)
        if existing is not None:
            # Duplicate start: keep what this run has already accumulated
            self._remember_cwd(existing, payload.cwd)
            if payload.cwd:
                existing.cwd = payload.cwd
            existing.last_activity = now
            logger.info(f"Session restarted while live: {existing.project_name}")
            return

        self._create_session(session_id, payload.cwd, now, label="started")

    async def _on_session_end(self, payload: HookPayload, now: datetime) -> None:
        session = self._sessions.get(payload.session_id)
        if session is None:
            logger.debug(f"SessionEnd for unknown session {payload.session_id}")
            return

        if payload.transcript_path:
            summary = await self._parse_transcript(payload.transcript_path)
            if summary is not None and summary.total_tokens > 0:
                session.copy_usage_from(summary)
                logger.info(
                    f"Session {session.project_name} tokens from transcript: "
                    f"{summary.total_tokens} (${summary.cost_usd:.4f})"
                )

        self._end_session(session, now)
        logger.info(f"Session ended: {session.project_name}")

    def _on_user_prompt(self, payload: HookPayload, now: datetime) -> None:
        session = self._ensure_session(payload.session_id, payload.cwd, now)
        self._transition(session, SessionStatus.WORKING, now)
        session.last_activity = now
        self._accumulate_tokens(session, payload)

    def _on_pre_tool_use(self, payload: HookPayload, now: datetime) -> None:
        session = self._ensure_session(payload.session_id, payload.cwd, now)
        session.tool_count += 1

        tool_name = payload.tool_name
        if tool_name:
            session.last_tool = tool_name
            call = ToolCall(name=tool_name, timestamp=now, input=_tool_input(payload.tool_input))
            session.recent_tools = [call, *session.recent_tools][: self.recent_tools_limit]

        if tool_name and tool_name in self.user_input_tools:
            self._transition(session, SessionStatus.WAITING_FOR_INPUT, now)
            session.waiting_for_input_since = now
        elif session.status is SessionStatus.WAITING_FOR_INPUT:
            # Follow-up tool calls right after asking the user are not new work
            if self._debounce_elapsed(session, now):
                self._transition(session, SessionStatus.WORKING, now)
        else:
            self._transition(session, SessionStatus.WORKING, now)

        session.last_activity = now
        self._accumulate_tokens(session, payload)

    def _on_stop(self, payload: HookPayload, now: datetime) -> None:
        session = self._ensure_session(payload.session_id, payload.cwd, now)
        if session.status is SessionStatus.WAITING_FOR_INPUT:
            if self._debounce_elapsed(session, now):
                self._transition(session, SessionStatus.IDLE, now)
        else:
            self._transition(session, SessionStatus.IDLE, now)

        session.last_activity = now
        self._accumulate_tokens(session, payload)

    def _on_subagent_start(self, payload: HookPayload, now: datetime) -> None:
        session = self._ensure_session(payload.session_id, payload.cwd, now)
        session.last_activity = now
        if not payload.agent_id:
            return

        self._subagents[(payload.session_id, payload.agent_id)] = TrackedSubagent(
            id=payload.agent_id,
            session_id=payload.session_id,
            type=payload.agent_type or "unknown",
            start_time=now,
        )
        logger.debug(f"Subagent started: {payload.agent_id} in {session.project_name}")

    async def _on_subagent_stop(self, payload: HookPayload, now: datetime) -> None:
        session = self._ensure_session(payload.session_id, payload.cwd, now)
        session.last_activity = now
        if payload.agent_id:
            self._subagents.pop((payload.session_id, payload.agent_id), None)

        if not payload.agent_transcript_path:
            return
        summary = await self._parse_transcript(payload.agent_transcript_path)
        if summary is None:
            return

        session.input_tokens += summary.input_tokens
        session.output_tokens += summary.output_tokens
        session.cache_creation_tokens += summary.cache_creation_tokens
        session.cache_read_tokens += summary.cache_read_tokens
        session.total_tokens += summary.total_tokens
        session.cost_usd += summary.cost_usd
        merge_model_breakdown(session.model_breakdown, summary.model_breakdown)
        if session.model is None:
            session.model = summary.model
        logger.info(
            f"Subagent {payload.agent_id or 'unknown'} added {summary.total_tokens} tokens "
            f"(${summary.cost_usd:.4f}) to {session.project_name}"
        )

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _remember_cwd(session: Session, cwd: str | None) -> None:
        """Pin the first directory seen for a session that started without one."""
        if cwd and session.initial_cwd is None:
            session.initial_cwd = cwd
            session.project_name = project_name(cwd, session.id)

    def _ensure_session(self, session_id: str, cwd: str | None, now: datetime) -> Session:
        """Return the live session, creating it if its start event was missed."""
        session = self._sessions.get(session_id)
        if session is None:
            session = self._create_session(session_id, cwd, now, label="connected")
        else:
            self._remember_cwd(session, cwd)
        return session

    def _create_session(
        self, session_id: str, cwd: str | None, now: datetime, label: str
    ) -> Session:
        previous = self.history.find(session_id)
        initial_cwd = (previous.initial_cwd if previous else None) or cwd
        session = Session(
            id=session_id,
            status=SessionStatus.IDLE,
            project_name=project_name(initial_cwd, session_id),
            initial_cwd=initial_cwd,
            cwd=cwd,
            start_time=now,
            last_activity=now,
            status_since=now,
        )

        if previous is not None:
            session.start_time = previous.start_time
            session.tool_count = previous.tool_count
            session.copy_usage_from(previous)
            session.total_working_ms = previous.total_working_ms
            session.total_waiting_ms = previous.total_waiting_ms
            session.total_idle_ms = previous.total_idle_ms
            logger.info(
                f"Session resumed: {session.project_name} ({previous.total_tokens} tokens, "
                f"${previous.cost_usd:.4f} from previous run)"
            )
        else:
            self.history.record_session_started(now)
            logger.info(f"Session {label}: {session.project_name}")

        self._baselines[session_id] = _usage_snapshot(session)
        self._sessions[session_id] = session
        return session

    def _end_session(
        self, session: Session, now: datetime, accrue_until: datetime | None = None
    ) -> None:
        self._accrue(session, max(accrue_until or now, session.status_since))
        session.waiting_for_input_since = None

        self.history.upsert(session, end_time=now)
        self.history.record_session_ended(now, self._run_delta(session))

        self._sessions.pop(session.id, None)
        self._baselines.pop(session.id, None)
        for key in [k for k in self._subagents if k[0] == session.id]:
            del self._subagents[key]

    def _run_delta(self, session: Session) -> RunDelta:
        final = _usage_snapshot(session)
        base = self._baselines.get(session.id) or RunDelta()
        model_breakdown = {
            model: tokens.minus(base.model_breakdown[model])
            if model in base.model_breakdown
            else tokens
            for model, tokens in final.model_breakdown.items()
        }
        return RunDelta(
            tokens=final.tokens.minus(base.tokens),
            cost_usd=max(0.0, final.cost_usd - base.cost_usd),
            model_breakdown=model_breakdown,
            working_ms=max(0, final.working_ms - base.working_ms),
            waiting_ms=max(0, final.waiting_ms - base.waiting_ms),
            idle_ms=max(0, final.idle_ms - base.idle_ms),
        )

    def _transition(self, session: Session, status: SessionStatus, now: datetime) -> None:
        if session.status is not status:
            self._accrue(session, now)
            session.status = status
            if status is SessionStatus.WAITING_FOR_INPUT:
                session.waiting_for_input_since = now
        if status is not SessionStatus.WAITING_FOR_INPUT:
            session.waiting_for_input_since = None

    def _accrue(self, session: Session, now: datetime) -> None:
        """Credit time since the last transition to the current status."""
        duration = elapsed_ms(session.status_since, now)
        if session.status is SessionStatus.WORKING:
            session.total_working_ms += duration
        elif session.status is SessionStatus.WAITING_FOR_INPUT:
            session.total_waiting_ms += duration
        else:
            session.total_idle_ms += duration
        session.status_since = now

    def _debounce_elapsed(self, session: Session, now: datetime) -> bool:
        since = session.waiting_for_input_since or session.status_since
        return elapsed_ms(since, now) > self.waiting_debounce_ms

    @staticmethod
    def _accumulate_tokens(session: Session, payload: HookPayload) -> None:
        if payload.input_tokens:
            session.input_tokens += payload.input_tokens
        if payload.output_tokens:
            session.output_tokens += payload.output_tokens
        if payload.total_tokens:
            session.total_tokens += payload.total_tokens
        else:
            session.total_tokens += (payload.input_tokens or 0) + (payload.output_tokens or 0)
        if payload.cost_usd:
            session.cost_usd += payload.cost_usd

    async def _parse_transcript(self, path: str) -> TranscriptSummary | None:
        return await asyncio.to_thread(
            parse_transcript, path, self.pricing, self.user_input_tools
        )

    def _broadcast(self) -> None:
        if not self._listeners:
            return
        state = self.get_state()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"State listener failed: {e}")

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
            self._lock_refs[session_id] = 0
        self._lock_refs[session_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_refs[session_id] -= 1
            if self._lock_refs[session_id] == 0:
                del self._lock_refs[session_id]
                del self._locks[session_id]

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.stale_check_interval_seconds)
            try:
                await self.sweep_stale_sessions()
            except Exception as e:
                logger.error(f"Stale session sweep failed: {e}", exc_info=True)


# Global store instance
_store: SessionStore | None = None


def init_session_store() -> SessionStore:
    """Initialize and return the global session store from settings."""
    global _store
    if _store is None:
        history = HistoryStore(
            settings.history_file,
            retention_days=settings.history_retention_days,
            save_delay_seconds=settings.history_save_delay_seconds,
        )
        history.load()
        _store = SessionStore(
            history,
            get_price_resolver(),
            session_timeout_seconds=settings.session_timeout_seconds,
            stale_check_interval_seconds=settings.stale_check_interval_seconds,
            waiting_debounce_ms=settings.waiting_debounce_ms,
            recent_tools_limit=settings.recent_tools_limit,
            user_input_tools=settings.get_user_input_tools(),
        )
    return _store


def get_session_store() -> SessionStore:
    """Get the session store (dependency injection).

    Auto-initializes if not already initialized (useful for tests).
    """
    return init_session_store()
