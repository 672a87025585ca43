# db/bigquery_client.py
import logging

from google.cloud import bigquery
from google.oauth2 import service_account

from config import (
    CREDENTIALS_PATH, DATASET_ID, QUERY_LOCATION, MAXIMUM_BYTES_BILLED, QUERY_TIMEOUT,
)
from errors import ConfigError
from models import TableField, TableSchema

LOG = logging.getLogger(__name__)


def make_client(credentials_path=CREDENTIALS_PATH):
    """Build the long-lived client from a service-account file. Fails fast if it is missing."""
    try:
        credentials = service_account.Credentials.from_service_account_file(credentials_path)
    except (OSError, ValueError) as e:
        raise ConfigError("Could not load warehouse credentials", f"{credentials_path}: {e}")
    return bigquery.Client(credentials=credentials, project=credentials.project_id)


def list_table_ids(client):
    return [t.table_id for t in client.list_tables(DATASET_ID, timeout=QUERY_TIMEOUT)]


def fetch_table_schema(client, table_id):
    table = client.get_table(f"{DATASET_ID}.{table_id}", timeout=QUERY_TIMEOUT)
    return TableSchema(tuple(
        TableField(
            name=f.name,
            type=f.field_type,
            mode=f.mode,
            description=f.description,
        )
        for f in (table.schema or [])
    ))


def submit_query(client, sql):
    job_config = bigquery.QueryJobConfig(maximum_bytes_billed=MAXIMUM_BYTES_BILLED)
    job = client.query(sql, job_config=job_config, location=QUERY_LOCATION, timeout=QUERY_TIMEOUT)
    LOG.info("Job %s started.", job.job_id)
    return job


def fetch_rows(job, timeout=QUERY_TIMEOUT):
    """Wait for the job and return its rows as plain dicts, in result order."""
    return [dict(row.items()) for row in job.result(timeout=timeout)]
