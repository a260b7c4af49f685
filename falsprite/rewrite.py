"""
Prompt rewriting with Gemini via google-genai.

Used instead of the queued fal `openrouter/router` endpoint when a
GOOGLE_API_KEY is configured. The response is reshaped into the same
JobOutcome the fal client returns so callers extract text the same way.
"""

import logging
from typing import Optional

import httpx
from google import genai
from google.genai import errors, types

from .config import GEMINI_REWRITE_MODEL, get_google_api_key
from .fal_client import JobFailure, JobOutcome, JobStage, JobSuccess

logger = logging.getLogger(__name__)


def get_client(api_key: str = None) -> genai.Client:
    """
    Get a configured Google GenAI client.

    Args:
        api_key: The API key. If None, uses GOOGLE_API_KEY environment variable.

    Returns:
        Configured genai.Client instance.
    """
    if api_key is None:
        api_key = get_google_api_key()

    if not api_key:
        raise ValueError(
            "No API key provided. Set GOOGLE_API_KEY environment variable "
            "or pass api_key parameter."
        )

    return genai.Client(api_key=api_key)


async def run_gemini_rewrite(
    prompt: str,
    system_prompt: str,
    max_output_tokens: int = 420,
    temperature: float = 0.65,
    client: Optional[genai.Client] = None,
    model_name: str = GEMINI_REWRITE_MODEL,
) -> JobOutcome:
    """
    Rewrite a prompt with Gemini.

    Returns:
        JobSuccess with `{"text": ...}` data, or JobFailure(stage=result)
        carrying the API error code and message, or status 502 when the
        API could not be reached.
    """
    client = client or get_client()
    try:
        response = await client.aio.models.generate_content(
            model=model_name,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                max_output_tokens=max_output_tokens,
                temperature=temperature,
            ),
        )
    except errors.APIError as e:
        logger.warning(f"Gemini rewrite failed ({e.code}): {e.message}")
        return JobFailure(
            status=e.code or 502,
            stage=JobStage.RESULT,
            data={"error": e.message or str(e)},
        )
    except httpx.HTTPError as e:
        logger.warning(f"Gemini rewrite unreachable: {e}")
        return JobFailure(
            status=502,
            stage=JobStage.RESULT,
            data={"error": f"Request failed: {e}"},
        )

    return JobSuccess(status=200, data={"text": response.text or ""})
