"""Configuration: paths, API keys, categorization policy."""

import os
from pathlib import Path

# Base directory for the JSON tables
DATA_DIR = Path(os.environ.get("RECEIPT_CATEGORIZER_DATA_DIR", Path.cwd() / "data"))

# Anthropic API key for the model fallback (stage 3)
ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
MODEL_NAME = os.environ.get("RECEIPT_CATEGORIZER_MODEL", "claude-sonnet-4-5-20250929")
MODEL_TIMEOUT_SECONDS = float(os.environ.get("RECEIPT_CATEGORIZER_MODEL_TIMEOUT", "8"))
MODEL_MAX_TOKENS = 256

# What the model is allowed to see of a receipt
SNIPPET_MAX_LINE_ITEMS = 10
SNIPPET_MAX_DESCRIPTION_CHARS = 80
SNIPPET_MAX_RAW_TEXT_CHARS = 2000

# Context scorer policy (tuned values, keep configurable)
HEURISTIC_THRESHOLD = float(os.environ.get("RECEIPT_CATEGORIZER_THRESHOLD", "0.5"))
DEFAULT_CATEGORY_ID = os.environ.get("RECEIPT_CATEGORIZER_DEFAULT_CATEGORY", "supplies")

# Queue retry policy
MAX_ATTEMPTS = int(os.environ.get("RECEIPT_CATEGORIZER_MAX_ATTEMPTS", "3"))
BATCH_LIMIT = 100

LOG_LEVEL = os.environ.get("RECEIPT_CATEGORIZER_LOG_LEVEL", "WARNING")

# Extraction output accepted by `ingest`
SUPPORTED_EXTENSIONS = {".json"}
