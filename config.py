# config.py
# Values below are read from the environment (a local .env is loaded first)
import os
import secrets

from dotenv import load_dotenv

load_dotenv()

# completion provider
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
LLM_MODEL = os.getenv("NLQ_LLM_MODEL", "gpt-4")
LLM_TIMEOUT = float(os.getenv("NLQ_LLM_TIMEOUT", "30"))   # seconds

# service-account JSON for the warehouse client
CREDENTIALS_PATH = os.getenv("BIGQUERY_CREDENTIALS_PATH", "../boatred.json")

# The only dataset this console talks to
PROJECT_ID = "bigquery-public-data"
DATASET_NAME = "google_trends"
DATASET_ID = f"{PROJECT_ID}.{DATASET_NAME}"

QUERY_LOCATION = "US"
MAXIMUM_BYTES_BILLED = 8_000_000_000
QUERY_TIMEOUT = 30   # seconds

# UI waits this long after the last keystroke before asking for a preview
PREVIEW_DEBOUNCE_MS = 500

PORT = int(os.getenv("PORT", "3000"))
# random per process: sessions (and their history) end with the process
SECRET_KEY = os.getenv("FLASK_SECRET_KEY") or secrets.token_hex(32)
