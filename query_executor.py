# query_executor.py
import base64
import concurrent.futures
import datetime
import decimal
import logging
import re
from typing import Any

from config import DATASET_ID, QUERY_TIMEOUT
from db.bigquery_client import submit_query, fetch_rows
from errors import (
    NLQError, QuerySyntaxError, TableNotFound, PermissionDenied, ResourceExceeded,
    UnknownQueryError,
)
from models import QueryResult

LOG = logging.getLogger(__name__)

# first FROM only; this is a text substitution, not a SQL parse
FROM_RE = re.compile(r"FROM\s+([^\s]+)", re.IGNORECASE)


class QueryFailed(Exception):
    """Raised by execute_query. Carries the mapped error and the SQL that was actually sent."""

    def __init__(self, error: NLQError, query: str, during_execution: bool):
        super().__init__(error.message)
        self.error = error
        self.query = query
        # False when the failure happened before the job produced anything (HTTP 500)
        self.during_execution = during_execution

    def to_dict(self) -> dict:
        out = self.error.to_dict()
        out["query"] = self.query
        if self.during_execution:
            out["kind"] = self.error.kind
        return out


def qualify_table_reference(sql: str) -> str:
    if DATASET_ID.lower() in sql.lower():
        return sql
    return FROM_RE.sub(lambda m: f"FROM {DATASET_ID}.{m.group(1)}", sql, count=1)


def map_query_error(message: str) -> NLQError:
    """Best-effort classification of an upstream error text. First match wins."""
    if "Syntax error" in message:
        details = message.split("Syntax error:", 1)[1].strip() if "Syntax error:" in message else ""
        return QuerySyntaxError("SQL syntax error", details or message)
    if "Table not found" in message:
        return TableNotFound(
            "Table not found",
            "Check that the table name is correct and that you have access to it",
        )
    if "Permission denied" in message:
        return PermissionDenied(
            "Permission denied",
            "You do not have permission to access this table or dataset",
        )
    if "exceeded" in message:
        return ResourceExceeded(
            "Resource limit exceeded",
            "The query exceeded the processing or data limits",
        )
    return UnknownQueryError("Error executing the query", message)


def _error_text(exc: Exception) -> str:
    # some failures (e.g. timeouts) stringify to ""
    return getattr(exc, "message", None) or str(exc) or type(exc).__name__


def to_json_value(value: Any) -> Any:
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, dict):
        return {k: to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    return value


def execute_query(client, query: str) -> QueryResult:
    final_query = qualify_table_reference(query)
    LOG.info("Executing query: %s", final_query)

    try:
        job = submit_query(client, final_query)
    except Exception as e:
        LOG.exception("Error submitting query")
        raise QueryFailed(UnknownQueryError("Error processing the query", _error_text(e)),
                          query, during_execution=False)

    try:
        rows = fetch_rows(job)
    except concurrent.futures.TimeoutError:
        LOG.warning("Query job %s did not finish within %ss", job.job_id, QUERY_TIMEOUT)
        raise QueryFailed(
            UnknownQueryError("Query timed out", f"The query did not finish within {QUERY_TIMEOUT} seconds"),
            final_query, during_execution=True)
    except Exception as e:
        LOG.warning("Query job failed: %s", _error_text(e))
        raise QueryFailed(map_query_error(_error_text(e)), final_query, during_execution=True)

    if not rows:
        return QueryResult(columns=[], rows=[])

    columns = list(rows[0].keys())
    return QueryResult(
        columns=columns,
        rows=[{col: to_json_value(row.get(col)) for col in columns} for row in rows],
    )
