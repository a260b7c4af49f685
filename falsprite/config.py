"""
Runtime configuration for the FalSprite pipeline.

Values come from the environment; `.env.local` is read first so local
overrides win over a checked-in `.env`.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env files
load_dotenv(".env.local")
load_dotenv()


class FalConfig:
    """Remote compute API settings"""
    DIRECT_BASE_URL = "https://fal.run"
    QUEUE_BASE_URL = "https://queue.fal.run"
    STORAGE_INITIATE_URL = "https://rest.alpha.fal.ai/storage/upload/initiate"

    # Polling
    POLL_INTERVAL_SECONDS = 1.8
    DEFAULT_TIMEOUT_MS = 240000
    REWRITE_TIMEOUT_MS = 120000

    # HTTP
    HTTP_TIMEOUT_SECONDS = 60.0
    DOWNLOAD_TIMEOUT_SECONDS = 120.0


class Endpoints:
    """Model endpoint identifiers"""
    SPRITE = "fal-ai/nano-banana-2"
    SPRITE_EDIT = "fal-ai/nano-banana-pro/edit"
    REMOVE_BG = "fal-ai/bria/background/remove"
    REWRITE = "openrouter/router"
    REWRITE_MODEL = "openai/gpt-4o-mini"


GEMINI_REWRITE_MODEL = os.getenv("GEMINI_REWRITE_MODEL", "gemini-2.5-flash")

PORT = int(os.getenv("PORT", "8787"))

PUBLIC_DIR = Path(os.getenv("FALSPRITE_PUBLIC_DIR", "public"))
SHOWCASE_DIR = PUBLIC_DIR / "showcase"
SHOWCASE_JSON = PUBLIC_DIR / "showcase.json"


def get_fal_key(override: Optional[str] = None) -> str:
    """Return the caller-supplied key, falling back to FAL_KEY."""
    return (override or os.getenv("FAL_KEY") or "").strip()


def get_google_api_key() -> Optional[str]:
    return os.getenv("GOOGLE_API_KEY") or None
