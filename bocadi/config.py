"""
Environment configuration for the Bocadi backend.

Values come from the process environment (a local .env is loaded on
import). Supabase and the LLM providers accept the same alias spellings
the dashboard snippets use, so `supabaseUrl` and `SUPABASE_URL` both work.
"""

import os

from dotenv import load_dotenv

load_dotenv()

SUPABASE_URL_NAMES = ("SUPABASE_URL", "supabaseUrl")
SUPABASE_KEY_NAMES = (
    "SUPABASE_SERVICE_ROLE_KEY",
    "supabaseServiceRoleKey",
    "supabaseServiceKey",
    "supabaseKey",
)

DEFAULT_LLM_PROVIDER = "groq"
DEFAULT_GROQ_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_GROQ_MODEL = "llama-3.1-8b-instant"
DEFAULT_AZURE_API_VERSION = "2024-12-01-preview"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash-lite"
DEFAULT_BRAND = "bocadi"


def get_setting(*names, default=None):
    """Return the first non-empty environment variable among `names`."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


def supabase_credentials():
    return get_setting(*SUPABASE_URL_NAMES), get_setting(*SUPABASE_KEY_NAMES)


def llm_provider():
    return get_setting("LLM_PROVIDER", default=DEFAULT_LLM_PROVIDER).strip().lower()


def brand():
    return get_setting("BOCADI_BRAND", default=DEFAULT_BRAND)


def port():
    return int(get_setting("PORT", default="8000"))
