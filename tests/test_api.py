import pytest
from google.api_core import exceptions as gexc

import config
from errors import ConfigError
from main import create_app

DATASET = "bigquery-public-data.google_trends"


def select(client):
    client.get(f"/api/tables/{DATASET}")
    return {"datasetId": DATASET, "tableId": "top_terms"}


def test_home_page_renders(client):
    response = client.get("/")
    assert response.status_code == 200
    assert b"Query history" in response.data


def test_datasets(client):
    response = client.get("/api/datasets")
    assert response.status_code == 200
    assert response.get_json() == [{"id": DATASET, "tables": []}]


def test_tables(client):
    response = client.get(f"/api/tables/{DATASET}")
    assert response.status_code == 200
    data = response.get_json()
    assert [t["id"] for t in data] == ["top_terms", "international_top_terms"]
    assert data[0]["name"] == "top_terms"
    assert data[0]["schema"]["fields"][1] == {"name": "rank", "type": "INTEGER", "mode": "NULLABLE"}


def test_tables_permission_error_is_500(client, warehouse):
    warehouse.list_error = gexc.Forbidden("Access Denied: Dataset")
    response = client.get(f"/api/tables/{DATASET}")
    assert response.status_code == 500
    assert response.get_json() == {
        "error": "No permission to access the tables",
        "details": "Access Denied: Dataset",
    }


def test_table_schema(client):
    response = client.get(f"/api/tables/{DATASET}/top_terms/schema")
    assert response.status_code == 200
    assert [f["name"] for f in response.get_json()["fields"]] == ["term", "rank", "week"]


def test_missing_table_schema_is_500(client):
    response = client.get(f"/api/tables/{DATASET}/nope/schema")
    assert response.status_code == 500
    assert "not found" in response.get_json()["error"]


@pytest.mark.parametrize("body", [{}, {"query": ""}, {"query": "   \n"}, {"query": 42}])
def test_empty_query_is_rejected_without_upstream_call(client, warehouse, body):
    response = client.post("/api/query", json=body)
    assert response.status_code == 400
    assert set(response.get_json()) == {"error", "details"}
    assert warehouse.queries == []


def test_query_is_qualified_before_running(client, warehouse):
    warehouse.rows = [{"term": "weather", "rank": 1}]
    response = client.post("/api/query", json={"query": "SELECT * FROM trends LIMIT 5"})
    assert response.status_code == 200
    assert response.get_json() == {"columns": ["term", "rank"], "rows": [{"term": "weather", "rank": 1}]}
    assert warehouse.queries[0].sql == "SELECT * FROM bigquery-public-data.google_trends.trends LIMIT 5"


def test_qualified_query_is_sent_unmodified(client, warehouse):
    sql = "SELECT * FROM bigquery-public-data.google_trends.trends LIMIT 5"
    client.post("/api/query", json={"query": sql})
    assert warehouse.queries[0].sql == sql


def test_zero_rows(client):
    response = client.post("/api/query", json={"query": "SELECT * FROM top_terms WHERE FALSE"})
    assert response.status_code == 200
    assert response.get_json() == {"columns": [], "rows": []}


def test_permission_denied_maps_to_tagged_400(client, warehouse):
    warehouse.job_error = gexc.Forbidden("Access Denied: blah blah Permission denied while reading table")
    response = client.post("/api/query", json={"query": "SELECT * FROM top_terms"})
    assert response.status_code == 400
    assert response.get_json() == {
        "error": "Permission denied",
        "details": "You do not have permission to access this table or dataset",
        "query": "SELECT * FROM bigquery-public-data.google_trends.top_terms",
        "kind": "permission_denied",
    }


def test_submit_failure_is_500(client, warehouse):
    warehouse.submit_error = RuntimeError("credentials expired")
    response = client.post("/api/query", json={"query": "SELECT * FROM top_terms"})
    assert response.status_code == 500
    assert response.get_json() == {
        "error": "Error processing the query",
        "details": "credentials expired",
        "query": "SELECT * FROM top_terms",
    }


def test_preview_uses_selected_table_schema(client, llm):
    llm.chat.completions.replies = ["SELECT term FROM top_terms"]
    response = client.post("/api/preview", json=dict(select(client), text="top terms"))
    assert response.status_code == 200
    assert response.get_json() == {"seq": 1, "sql": "SELECT term FROM top_terms", "applied": True, "generating": False}
    messages = llm.chat.completions.calls[0]["messages"]
    assert messages[1]["content"].startswith("The table has the following columns:")
    assert messages[2]["content"] == f"top terms (using dataset {DATASET} and table top_terms)"


def test_preview_without_table_makes_no_call(client, llm):
    response = client.post("/api/preview", json={"datasetId": DATASET, "text": "top terms"})
    assert response.get_json()["sql"] == ""
    assert llm.chat.completions.calls == []


def test_submit_runs_preview_and_records_history(client, llm, warehouse):
    selection = select(client)
    llm.chat.completions.replies = ["SELECT term FROM top_terms"]
    client.post("/api/preview", json=dict(selection, text="top terms"))
    warehouse.rows = [{"term": "weather"}]

    response = client.post("/api/submit", json=dict(selection, text="top terms"))
    assert response.status_code == 200
    data = response.get_json()
    assert data["result"] == {"columns": ["term"], "rows": [{"term": "weather"}]}
    assert data["sql"] == "SELECT term FROM top_terms"
    assert data["entry"]["status"] == "success"
    # preview was reused, not regenerated
    assert len(llm.chat.completions.calls) == 1

    warehouse.job_error = gexc.BadRequest("Syntax error: Unexpected end of script at [1:20]")
    response = client.post("/api/submit", json=dict(selection, text="top terms"))
    assert response.status_code == 400
    assert response.get_json()["kind"] == "syntax_error"
    assert response.get_json()["details"] == "Unexpected end of script at [1:20]"

    history = client.get("/api/history").get_json()
    assert [e["status"] for e in history] == ["error", "success"]
    assert history[0]["sqlQuery"] == "SELECT term FROM top_terms"
    assert history[0]["error"] == "SQL syntax error"


def test_submit_without_selection_is_rejected(client, llm, warehouse):
    response = client.post("/api/submit", json={"datasetId": DATASET, "text": "top terms"})
    assert response.status_code == 400
    assert llm.chat.completions.calls == []
    assert warehouse.queries == []
    assert client.get("/api/history").get_json() == []


def test_history_is_per_session(app, client):
    select(client)
    client.post("/api/submit", json={"datasetId": DATASET, "tableId": "top_terms", "text": "x"})
    assert len(client.get("/api/history").get_json()) == 1
    assert app.test_client().get("/api/history").get_json() == []


def test_missing_api_key_fails_at_startup(monkeypatch, warehouse):
    monkeypatch.setattr(config, "OPENAI_API_KEY", None)
    with pytest.raises(ConfigError):
        create_app(warehouse=warehouse)


def test_cookieless_reads_create_no_sessions(app, warehouse):
    for _ in range(50):
        assert app.test_client().get("/api/history").get_json() == []
        app.test_client().get(f"/api/tables/{DATASET}")
    assert len(app.extensions["nlq"]["sessions"]) == 0


def test_first_preview_fetches_schema_once(client, llm, warehouse):
    selection = select(client)
    calls_after_listing = len(warehouse.metadata_calls)
    client.post("/api/preview", json=dict(selection, text="top terms"))
    client.post("/api/preview", json=dict(selection, text="top terms this week"))
    assert len(warehouse.metadata_calls) == calls_after_listing + 1
    for call in llm.chat.completions.calls:
        assert call["messages"][1]["content"].startswith("The table has the following columns:")


def test_table_listing_is_kept_for_an_existing_session(client, warehouse):
    client.post("/api/preview", json={"datasetId": DATASET, "text": ""})
    client.get(f"/api/tables/{DATASET}")
    calls_after_listing = len(warehouse.metadata_calls)
    client.post("/api/preview", json={"datasetId": DATASET, "tableId": "top_terms", "text": "top terms"})
    assert len(warehouse.metadata_calls) == calls_after_listing
