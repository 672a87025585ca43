# main.py
import logging

from flask import Blueprint, Flask, current_app, jsonify, render_template, request, session
from flask_cors import CORS

import catalog
import config
from db.bigquery_client import make_client as make_warehouse_client
from errors import NLQError, ValidationFailure
from llm_adapter import generate_sql, make_client as make_llm_client
from models import Table
from query_executor import QueryFailed, execute_query
from session_state import SessionStore, SubmissionFailed

LOG = logging.getLogger(__name__)

bp = Blueprint("console", __name__)


def _warehouse():
    return current_app.extensions["nlq"]["warehouse"]


def _sessions() -> SessionStore:
    return current_app.extensions["nlq"]["sessions"]


def _state():
    """State for this browser session, created on first use. Write routes only."""
    sid = session.get("sid")
    if not sid:
        sid = session["sid"] = SessionStore.new_id()
    return _sessions().get(sid)


def _existing_state():
    return _sessions().peek(session.get("sid"))


def _body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _text(body: dict, key: str) -> str:
    val = body.get(key)
    return val if isinstance(val, str) else ""


def _lookup_schema(state, dataset_id, table_id):
    # session never listed tables: fetch this one table once and keep it
    try:
        schema = catalog.get_table_schema(_warehouse(), dataset_id, table_id)
    except NLQError as e:
        LOG.warning("Generating without schema for %s: %s", table_id, e.details or e.message)
        return None
    state.remember_table(Table(id=table_id, name=table_id, schema=schema))
    return schema


def _generator(state, dataset_id, table_id):
    client = current_app.extensions["nlq"]["llm"]

    def generate(text, schema):
        if schema is None:
            schema = _lookup_schema(state, dataset_id, table_id)
        return generate_sql(client, text, schema, dataset_id, table_id)
    return generate


@bp.route("/")
def home():
    return render_template("home.html", debounce_ms=config.PREVIEW_DEBOUNCE_MS)


@bp.route("/api/datasets")
def datasets():
    try:
        return jsonify([d.to_dict() for d in catalog.list_datasets()])
    except Exception as e:
        LOG.exception("Error fetching datasets")
        return jsonify({"error": "Could not load datasets", "details": str(e)}), 500


@bp.route("/api/tables/<dataset_id>")
def tables(dataset_id):
    try:
        found = catalog.list_tables(_warehouse(), dataset_id)
    except NLQError as e:
        LOG.exception("Error fetching tables")
        return jsonify(e.to_dict()), 500

    # remembered so previews can pass the selected table's schema to the model;
    # a read never creates a session
    state = _existing_state()
    if state is not None:
        state.remember_tables(dataset_id, found)
    return jsonify([t.to_dict() for t in found])


@bp.route("/api/tables/<dataset_id>/<table_id>/schema")
def table_schema(dataset_id, table_id):
    try:
        schema = catalog.get_table_schema(_warehouse(), dataset_id, table_id)
    except NLQError as e:
        LOG.exception("Error fetching table schema")
        return jsonify(e.to_dict()), 500
    return jsonify(schema.to_dict())


@bp.route("/api/query", methods=["POST"])
def query():
    sql = _text(_body(), "query")
    if not sql.strip():
        return jsonify({
            "error": "Query cannot be empty",
            "details": "A valid SQL query must be provided",
        }), 400

    try:
        result = execute_query(_warehouse(), sql)
    except QueryFailed as e:
        return jsonify(e.to_dict()), 400 if e.during_execution else 500
    except Exception as e:
        LOG.exception("Error processing query")
        return jsonify({"error": "Error processing the query", "details": str(e), "query": sql}), 500
    return jsonify(result.to_dict())


@bp.route("/api/preview", methods=["POST"])
def preview():
    body = _body()
    state = _state()
    dataset_id, table_id = state.select(body.get("datasetId"), body.get("tableId"))
    try:
        seq, sql, applied = state.request_preview(
            _text(body, "text"), _generator(state, dataset_id, table_id))
    except NLQError as e:
        # the previous preview stays in place
        LOG.exception("Error generating query preview")
        return jsonify(e.to_dict()), 502
    return jsonify({
        "seq": seq,
        "sql": sql,
        "applied": applied,
        # another preview for this session may still be in flight
        "generating": state.preview.is_generating,
    })


@bp.route("/api/submit", methods=["POST"])
def submit():
    body = _body()
    state = _state()
    dataset_id, table_id = state.select(body.get("datasetId"), body.get("tableId"))
    warehouse = _warehouse()

    try:
        result, entry = state.submit(
            _text(body, "text"),
            _generator(state, dataset_id, table_id),
            lambda sql: execute_query(warehouse, sql),
        )
    except ValidationFailure as e:
        return jsonify(e.to_dict()), 400
    except SubmissionFailed as e:
        err = e.error
        if isinstance(err, QueryFailed):
            out, status = err.to_dict(), 400 if err.during_execution else 500
        elif isinstance(err, NLQError):
            out, status = err.to_dict(), 502
        else:
            LOG.error("Error processing submission: %s", err)
            out = {"error": "Error processing the query", "details": str(err), "query": e.entry.sql_query}
            status = 500
        out["entry"] = e.entry.to_dict()
        return jsonify(out), status

    return jsonify({"result": result.to_dict(), "sql": entry.sql_query, "entry": entry.to_dict()})


@bp.route("/api/history")
def history():
    state = _existing_state()
    if state is None:
        return jsonify([])
    return jsonify([e.to_dict() for e in state.history.entries()])


def create_app(warehouse=None, llm_client=None) -> Flask:
    """
    Build the app. Both upstream clients are created once here and shared by all
    requests; a missing OPENAI_API_KEY or credentials file fails before serving.
    """
    if llm_client is None:
        llm_client = make_llm_client()
    if warehouse is None:
        warehouse = make_warehouse_client()

    app = Flask(__name__)
    app.secret_key = config.SECRET_KEY
    # keep row dicts in column order
    app.json.sort_keys = False
    app.extensions["nlq"] = {
        "warehouse": warehouse,
        "llm": llm_client,
        "sessions": SessionStore(),
    }
    CORS(app, resources={r"/api/*": {"origins": "*"}})
    app.register_blueprint(bp)
    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = create_app()
    LOG.info("Registered routes:")
    for r in sorted(rule.rule for rule in app.url_map.iter_rules()):
        LOG.info("  %s", r)
    LOG.info("Server running at http://localhost:%s", config.PORT)
    app.run(host="0.0.0.0", port=config.PORT, threaded=True)
