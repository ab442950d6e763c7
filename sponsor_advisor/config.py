import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env")

# Text generation (any OpenAI-compatible chat completions endpoint).
MODEL_NAME = os.getenv("MODEL_NAME") or "gpt-4.1-mini"
LLM_API_KEY = os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY", "")
LLM_BASE_URL = os.getenv("LLM_BASE_URL") or None
LLM_TIMEOUT_S = float(os.getenv("LLM_TIMEOUT_S", "30"))
STEP_TIMEOUT_S = float(os.getenv("STEP_TIMEOUT_S", "20"))  # Geocoding, candidate search, persistence

GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY", "")
MARKETPLACE_BASE_URL = os.getenv("MARKETPLACE_BASE_URL") or "https://app.example.com/marketplace"
SEED_DATA_PATH = os.getenv("SEED_DATA_PATH") or str(Path(__file__).parent.parent / "data" / "sample_data.json")

# "token:user_id,token2:user_id2". Empty means any bearer token is taken as the user id.
ADVISOR_API_TOKENS = os.getenv("ADVISOR_API_TOKENS", "")
CLI_USER_ID = os.getenv("CLI_USER_ID", "demo-business-owner")
MAX_CACHED_ADVISORS = int(os.getenv("MAX_CACHED_ADVISORS", "1000"))  # Idle per-user advisors kept in memory

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

MAX_HISTORY_MESSAGES = 20 # Recent messages sent to the text generator
MAX_RECOMMENDATIONS = 3 # Candidates attached to one assistant message
GROUNDING_MAX_ATTEMPTS = 2 # Generations tried before falling back to a fixed reply

DEFAULT_RADIUS_KM = 100.0
DEFAULT_BUDGET_MIN = 0.0
DEFAULT_BUDGET_MAX = 999999.0

EARTH_RADIUS_KM = 6371.0
MILES_TO_KM = 1.609344


def parse_api_tokens(raw: str) -> dict:
    """Parse ADVISOR_API_TOKENS into {token: user_id}."""
    tokens = {}
    for entry in raw.split(","):
        token, sep, user_id = entry.strip().partition(":")
        if sep and token and user_id:
            tokens[token] = user_id
    return tokens
