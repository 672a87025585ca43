from types import SimpleNamespace

import pytest
from google.api_core import exceptions as gexc

from main import create_app


def field(name, field_type, mode="NULLABLE", description=None):
    return SimpleNamespace(name=name, field_type=field_type, mode=mode, description=description)


class FakeJob:
    def __init__(self, rows, error=None):
        self.job_id = "job-test"
        self._rows = rows
        self._error = error

    def result(self, timeout=None):
        if self._error is not None:
            raise self._error
        return list(self._rows)


class FakeWarehouse:
    """Stands in for google.cloud.bigquery.Client; records what it is asked."""

    def __init__(self):
        self.tables = {
            "top_terms": [
                field("term", "STRING", description="Search term"),
                field("rank", "INTEGER"),
                field("week", "DATE"),
            ],
            "international_top_terms": [
                field("term", "STRING"),
                field("country_name", "STRING"),
            ],
        }
        self.rows = []
        self.job_error = None
        self.submit_error = None
        self.list_error = None
        self.get_error = None
        self.queries = []
        self.metadata_calls = []

    def list_tables(self, dataset, timeout=None):
        if self.list_error is not None:
            raise self.list_error
        return [SimpleNamespace(table_id=t) for t in self.tables]

    def get_table(self, ref, timeout=None):
        self.metadata_calls.append(ref)
        if self.get_error is not None:
            raise self.get_error
        table_id = ref.rsplit(".", 1)[-1]
        if table_id not in self.tables:
            raise gexc.NotFound(f"Not found: Table {ref}")
        return SimpleNamespace(schema=self.tables[table_id])

    def query(self, sql, job_config=None, location=None, timeout=None):
        self.queries.append(SimpleNamespace(sql=sql, job_config=job_config, location=location, timeout=timeout))
        if self.submit_error is not None:
            raise self.submit_error
        return FakeJob(self.rows, self.job_error)


class FakeCompletions:
    def __init__(self):
        self.calls = []
        self.replies = []
        self.error = None

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        content = self.replies.pop(0) if self.replies else "SELECT term FROM top_terms LIMIT 10"
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeLLM:
    def __init__(self):
        self.chat = SimpleNamespace(completions=FakeCompletions())


@pytest.fixture
def warehouse():
    return FakeWarehouse()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def app(warehouse, llm):
    app = create_app(warehouse=warehouse, llm_client=llm)
    app.config.update(TESTING=True)
    return app


# Client keeps its cookie jar, so requests share one browser session
@pytest.fixture
def client(app):
    return app.test_client()
