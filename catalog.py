# catalog.py
import logging
from typing import List

from google.api_core import exceptions as gexc

from config import DATASET_ID
from db.bigquery_client import list_table_ids, fetch_table_schema
from errors import TableNotFound, PermissionDenied, UnknownQueryError
from models import Dataset, Table, TableSchema

LOG = logging.getLogger(__name__)


def list_datasets() -> List[Dataset]:
    """The console exposes a single public dataset; its tables are listed separately."""
    return [Dataset(id=DATASET_ID, tables=[])]


def list_tables(client, dataset_id: str) -> List[Table]:
    """
    Return every table of the configured dataset with its schema.
    dataset_id is accepted for the route shape but always resolves to DATASET_ID.
    One metadata call per table.
    """
    if dataset_id != DATASET_ID:
        LOG.debug("list_tables(%s) ignored; using %s", dataset_id, DATASET_ID)
    try:
        return [
            Table(id=table_id, name=table_id, schema=fetch_table_schema(client, table_id))
            for table_id in list_table_ids(client)
        ]
    except gexc.Forbidden as e:
        raise PermissionDenied("No permission to access the tables", e.message)
    except gexc.NotFound as e:
        raise TableNotFound("Dataset not found", e.message)
    except Exception as e:
        raise UnknownQueryError("Error fetching tables", str(e))


def get_table_schema(client, dataset_id: str, table_id: str) -> TableSchema:
    try:
        return fetch_table_schema(client, table_id)
    except gexc.NotFound as e:
        raise TableNotFound(f"Table '{table_id}' not found", e.message)
    except gexc.Forbidden as e:
        raise PermissionDenied(f"No permission to access table '{table_id}'", e.message)
    except Exception as e:
        raise UnknownQueryError("Error fetching the table schema", str(e))
