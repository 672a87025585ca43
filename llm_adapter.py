# llm_adapter.py
"""
LLM adapter: natural language -> BigQuery SQL text.

Exports:
  - make_client(api_key=None)
  - build_messages(nl, schema=None, dataset_id=None, table_id=None)
  - generate_sql(client, nl, schema=None, dataset_id=None, table_id=None, model=None)

Notes:
 - Expects openai>=1.0.0 style client: from openai import OpenAI
 - The completion is returned as-is (trimmed). It is not checked for being SQL,
   and code fences are not stripped; whatever the model says is what runs.
 - One attempt per call: the client is built with max_retries=0.
"""

import logging
from typing import Dict, List, Optional

import openai
from openai import OpenAI

import config
from errors import ConfigError, TransportFailure, ValidationFailure
from models import TableSchema

LOG = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a SQL expert who converts natural-language requests into valid "
    "BigQuery SQL queries. Return only the SQL query, without any additional explanation."
)


def make_client(api_key: Optional[str] = None) -> OpenAI:
    api_key = api_key or config.OPENAI_API_KEY
    if not api_key:
        raise ConfigError("Missing required environment variables: OPENAI_API_KEY")
    return OpenAI(api_key=api_key, timeout=config.LLM_TIMEOUT, max_retries=0)


def describe_schema(schema: TableSchema) -> str:
    lines = ["The table has the following columns:"]
    for f in schema.fields:
        line = f"- {f.name} ({f.type})"
        if f.description:
            line += f": {f.description}"
        lines.append(line)
    return "\n".join(lines)


def build_request_text(nl: str, dataset_id: Optional[str] = None, table_id: Optional[str] = None) -> str:
    if dataset_id and table_id:
        return f"{nl} (using dataset {dataset_id} and table {table_id})"
    return nl


def build_messages(nl: str, schema: Optional[TableSchema] = None,
                   dataset_id: Optional[str] = None, table_id: Optional[str] = None) -> List[Dict[str, str]]:
    messages = [{"role": "system", "content": SYSTEM_PROMPT}]
    if schema is not None:
        messages.append({"role": "system", "content": describe_schema(schema)})
    messages.append({"role": "user", "content": build_request_text(nl, dataset_id, table_id)})
    return messages


def _extract_text_from_response(resp) -> str:
    choices = getattr(resp, "choices", None) or []
    if not choices:
        return ""
    msg = getattr(choices[0], "message", None)
    return getattr(msg, "content", None) or ""


def generate_sql(client, nl: str, schema: Optional[TableSchema] = None,
                 dataset_id: Optional[str] = None, table_id: Optional[str] = None,
                 model: Optional[str] = None) -> str:
    """
    Ask the completion provider for exactly one SQL completion.
    Raises ValidationFailure on blank input (no provider call) and
    TransportFailure when the provider call fails.
    """
    if not nl or not nl.strip():
        raise ValidationFailure("Query cannot be empty", "Describe the data you want to see")

    messages = build_messages(nl, schema, dataset_id, table_id)
    try:
        resp = client.chat.completions.create(
            model=model or config.LLM_MODEL,
            messages=messages,
            n=1,
        )
    except openai.OpenAIError as e:
        LOG.exception("LLM call failed")
        raise TransportFailure("Error generating the SQL query", str(e))

    return _extract_text_from_response(resp).strip()
