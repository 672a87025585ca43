# session_state.py
"""
Per-browser-session state for the console: selection, SQL preview, last result
and the query history. Lives in process memory only.

Preview ordering: each preview request gets a sequence number when it is issued.
A completion is applied only when its number is newer than the one currently
shown, so a slow early completion can never overwrite a later one. Requests are
never cancelled; their results are just dropped.
"""
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

from errors import ValidationFailure
from models import QueryLog, QueryResult, Table, TableSchema


@dataclass(frozen=True)
class Pending:
    seq: int


@dataclass(frozen=True)
class Resolved:
    seq: int
    value: str


PreviewState = Union[Pending, Resolved]


class PreviewTracker:
    def __init__(self):
        self._lock = threading.Lock()
        self._issued = 0
        self._settled = 0   # newest seq that resolved or failed
        self._applied = Resolved(seq=0, value="")

    def issue(self) -> Pending:
        with self._lock:
            self._issued += 1
            return Pending(self._issued)

    def resolve(self, seq: int, value: str) -> bool:
        """Apply a completion. Returns False when a newer one is already shown."""
        with self._lock:
            self._settled = max(self._settled, seq)
            if seq <= self._applied.seq:
                return False
            self._applied = Resolved(seq, value)
            return True

    def fail(self, seq: int) -> None:
        with self._lock:
            self._settled = max(self._settled, seq)

    def clear(self) -> int:
        """Reset the preview to empty; in-flight completions issued before this are dropped."""
        with self._lock:
            self._issued += 1
            self._settled = self._issued
            self._applied = Resolved(self._issued, "")
            return self._issued

    @property
    def state(self) -> PreviewState:
        with self._lock:
            if self._issued > self._settled:
                return Pending(self._issued)
            return self._applied

    @property
    def sql(self) -> str:
        with self._lock:
            return self._applied.value

    @property
    def is_generating(self) -> bool:
        return isinstance(self.state, Pending)


class QueryHistory:
    """Most-recent-first, append-only, unbounded."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: List[QueryLog] = []

    def record(self, entry: QueryLog) -> QueryLog:
        with self._lock:
            self._entries.insert(0, entry)
        return entry

    def entries(self) -> Tuple[QueryLog, ...]:
        with self._lock:
            return tuple(self._entries)

    def __len__(self):
        with self._lock:
            return len(self._entries)


def _user_message(exc: Exception) -> str:
    # executor failures wrap the mapped NLQError in .error
    err = getattr(exc, "error", exc)
    return getattr(err, "message", None) or str(exc)


class SubmissionFailed(Exception):
    def __init__(self, error: Exception, entry: QueryLog):
        super().__init__(str(error))
        self.error = error
        self.entry = entry


class SessionState:
    """
    Selection, known tables and last outcome are guarded by one lock. Upstream
    calls (generate / execute) always run with the lock released.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.dataset_id: Optional[str] = None
        self.table_id: Optional[str] = None
        self.tables: List[Table] = []
        self.preview = PreviewTracker()
        self.history = QueryHistory()
        self.result: Optional[QueryResult] = None
        self.error: Optional[str] = None

    def _select_dataset(self, dataset_id):
        # a different dataset invalidates the table choice and the known tables
        if (dataset_id or None) != self.dataset_id:
            self.dataset_id = dataset_id or None
            self.table_id = None
            self.tables = []

    def select_dataset(self, dataset_id: Optional[str]) -> None:
        with self._lock:
            self._select_dataset(dataset_id)

    def select_table(self, table_id: Optional[str]) -> None:
        with self._lock:
            self.table_id = table_id or None

    def select(self, dataset_id: Optional[str], table_id: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        """Set both in one step and return the resulting (dataset_id, table_id)."""
        with self._lock:
            self._select_dataset(dataset_id)
            self.table_id = table_id or None
            return self.dataset_id, self.table_id

    def remember_tables(self, dataset_id: str, tables: List[Table]) -> None:
        with self._lock:
            self._select_dataset(dataset_id)
            self.tables = list(tables)

    def remember_table(self, table: Table) -> None:
        with self._lock:
            self.tables = [t for t in self.tables if t.id != table.id] + [table]

    def can_submit(self) -> bool:
        with self._lock:
            return bool(self.dataset_id and self.table_id)

    def schema_for(self, table_id: Optional[str]) -> Optional[TableSchema]:
        with self._lock:
            return self._schema_for(table_id)

    def _schema_for(self, table_id):
        for t in self.tables:
            if t.id == table_id:
                return t.schema
        return None

    def _snapshot(self) -> Tuple[bool, Optional[TableSchema]]:
        with self._lock:
            return bool(self.dataset_id and self.table_id), self._schema_for(self.table_id)

    def _set_outcome(self, result: Optional[QueryResult], error: Optional[str]) -> None:
        with self._lock:
            if result is not None:
                self.result = result
            self.error = error

    def request_preview(self, text: str, generate: Callable[[str, Optional[TableSchema]], str]) -> Tuple[int, str, bool]:
        """
        Regenerate the SQL preview for text. Returns (seq, sql shown after this call, applied).
        generate receives the text and the selected table's schema.
        """
        selected, schema = self._snapshot()
        if not (text or "").strip() or not selected:
            seq = self.preview.clear()
            return seq, "", True
        pending = self.preview.issue()
        try:
            sql = generate(text, schema)
        except Exception:
            self.preview.fail(pending.seq)
            raise
        applied = self.preview.resolve(pending.seq, sql)
        return pending.seq, self.preview.sql, applied

    def submit(self, text: str,
               generate: Callable[[str, Optional[TableSchema]], str],
               execute: Callable[[str], QueryResult]) -> Tuple[QueryResult, QueryLog]:
        """
        Run one submission. Validation failures raise ValidationFailure and leave
        history untouched; every other outcome adds exactly one history entry.
        """
        selected, schema = self._snapshot()
        if not selected:
            error = "Please select a dataset and a table before running the query."
            self._set_outcome(None, error)
            raise ValidationFailure(error)
        if not (text or "").strip():
            self._set_outcome(None, "Query cannot be empty")
            raise ValidationFailure("Query cannot be empty", "Describe the data you want to see")

        sql = self.preview.sql
        if not sql:
            try:
                sql = generate(text, schema)
            except Exception as e:
                error = _user_message(e)
                self._set_outcome(None, error)
                raise SubmissionFailed(e, self._log(text, sql, error))

        try:
            result = execute(sql)
        except Exception as e:
            error = _user_message(e)
            self._set_outcome(None, error)
            raise SubmissionFailed(e, self._log(text, sql, error))

        self._set_outcome(result, None)
        return result, self._log(text, sql)

    def _log(self, text: str, sql: str, error: Optional[str] = None) -> QueryLog:
        return self.history.record(QueryLog(
            timestamp=datetime.now(),
            natural_query=text,
            sql_query=sql,
            status="error" if error is not None else "success",
            error=error,
        ))


class SessionStore:
    """Maps a session id to its state. Nothing is written anywhere."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, SessionState] = {}

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    def get(self, sid: str) -> SessionState:
        with self._lock:
            state = self._sessions.get(sid)
            if state is None:
                state = self._sessions[sid] = SessionState()
            return state

    def peek(self, sid: Optional[str]) -> Optional[SessionState]:
        """Existing state for sid, or None. Never creates an entry."""
        if not sid:
            return None
        with self._lock:
            return self._sessions.get(sid)

    def __len__(self):
        with self._lock:
            return len(self._sessions)
