"""
Single-request sprite generation flow.

    prompt ──► rewrite (soft) ──► sprite sheet (hard) ──► background removal (soft)

Soft stages append to a warnings list and the flow continues with degraded
output; the sprite stage raises GenerationError because nothing useful can
be returned without it.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from .config import Endpoints, FalConfig
from .errors import GenerationError
from .extract import extract_image_url, extract_text, pick_error_message
from .fal_client import FalClient, JobOutcome, JobRequest, validate_https_url
from .prompts import (
    build_rewrite_system_prompt,
    build_rewrite_user_prompt,
    build_sprite_prompt,
    make_default_prompt,
)
from .transcode import clamp_grid_size

logger = logging.getLogger(__name__)

# (user_prompt, system_prompt) -> JobOutcome
Rewriter = Callable[[str, str], Awaitable[JobOutcome]]


class GenerationResult(BaseModel):
    prompt_original: str
    prompt_rewritten: str
    sprite_url: str
    transparent_sprite_url: str = ""
    grid_size: int
    warnings: list[str] = Field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        return {
            "promptOriginal": self.prompt_original,
            "promptRewritten": self.prompt_rewritten,
            "spriteUrl": self.sprite_url,
            "transparentSpriteUrl": self.transparent_sprite_url,
            "warnings": self.warnings,
            "metadata": {
                "grid": f"{self.grid_size}x{self.grid_size}",
                "gridSize": self.grid_size,
                "resolution": "2K",
            },
        }


def fal_rewriter(client: FalClient) -> Rewriter:
    """Rewriter backed by the queued OpenRouter endpoint on fal."""
    async def rewrite(prompt: str, system_prompt: str) -> JobOutcome:
        job = JobRequest(
            endpoint=Endpoints.REWRITE,
            input={
                "model": Endpoints.REWRITE_MODEL,
                "prompt": prompt,
                "system_prompt": system_prompt,
                "max_tokens": 420,
                "temperature": 0.65,
            },
            timeout_ms=FalConfig.REWRITE_TIMEOUT_MS,
        )
        return await client.run_job(job)
    return rewrite


def build_sprite_job(sprite_prompt: str, reference_image_url: str = "") -> JobRequest:
    base = {
        "prompt": sprite_prompt,
        "aspect_ratio": "1:1",
        "resolution": "2K",
        "num_images": 1,
        "output_format": "png",
        "safety_tolerance": 2,
    }
    if reference_image_url:
        return JobRequest(
            endpoint=Endpoints.SPRITE_EDIT,
            input={**base, "image_urls": [reference_image_url]},
            timeout_ms=FalConfig.DEFAULT_TIMEOUT_MS,
        )
    return JobRequest(
        endpoint=Endpoints.SPRITE,
        input={**base, "expand_prompt": True},
        timeout_ms=FalConfig.DEFAULT_TIMEOUT_MS,
    )


async def rewrite_prompt(rewriter: Rewriter, prompt: str, grid_size: int,
                         warnings: list[str]) -> str:
    """Rewrite a prompt, falling back to the original on any failure."""
    outcome = await rewriter(
        build_rewrite_user_prompt(prompt, grid_size),
        build_rewrite_system_prompt(grid_size),
    )
    if not outcome.ok:
        message = f"Rewrite skipped: {pick_error_message(outcome.data, 'Rewrite failed')}"
        logger.warning(message)
        warnings.append(message)
        return prompt

    candidate = extract_text(outcome.data)
    if not candidate:
        message = "Rewrite returned unexpected format. Original prompt kept."
        logger.warning(message)
        warnings.append(message)
        return prompt
    return candidate


async def remove_background(client: FalClient, image_url: str, warnings: list[str]) -> str:
    """Run background removal; returns "" and records a warning on failure."""
    outcome = await client.run_direct(Endpoints.REMOVE_BG, {"image_url": image_url})
    if not outcome.ok:
        message = f"BG removal skipped: {pick_error_message(outcome.data, 'BRIA failed')}"
        logger.warning(message)
        warnings.append(message)
        return ""

    transparent_url = extract_image_url(outcome.data)
    if not transparent_url:
        message = "BG removal succeeded but no output URL."
        logger.warning(message)
        warnings.append(message)
    return transparent_url


async def generate_sprite(
    client: FalClient,
    prompt: Optional[str] = None,
    grid_size: Any = 4,
    image_url: Optional[str] = None,
    rewriter: Optional[Rewriter] = None,
) -> GenerationResult:
    """
    Generate a sprite sheet and its background-removed variant.

    Args:
        client: FalClient used for the sprite and background-removal jobs.
        prompt: Character concept; a random one is used when blank.
        grid_size: Grid edge, clamped to [2, 6].
        image_url: Optional https reference image; anything else is ignored.
        rewriter: Prompt rewriter; defaults to the queued fal endpoint.

    Raises:
        GenerationError: the sprite job failed or returned no image URL.
    """
    original_prompt = prompt.strip() if isinstance(prompt, str) and prompt.strip() else make_default_prompt()
    grid = clamp_grid_size(grid_size)
    warnings: list[str] = []

    rewritten = await rewrite_prompt(rewriter or fal_rewriter(client), original_prompt, grid, warnings)

    reference_url = image_url if validate_https_url(image_url) else ""
    job = build_sprite_job(build_sprite_prompt(rewritten, grid), reference_url)
    outcome = await client.run_job(job)
    if not outcome.ok:
        raise GenerationError(
            pick_error_message(outcome.data, "Sprite generation failed"),
            status=outcome.status,
            stage=outcome.stage.value,
            data=outcome.data,
            warnings=warnings,
        )

    sprite_url = extract_image_url(outcome.data)
    if not sprite_url:
        raise GenerationError("No image URL in sprite result", status=502, warnings=warnings)

    transparent_url = await remove_background(client, sprite_url, warnings)

    logger.info(f"Generated {grid}x{grid} sprite for '{original_prompt[:42]}' ({len(warnings)} warnings)")
    return GenerationResult(
        prompt_original=original_prompt,
        prompt_rewritten=rewritten,
        sprite_url=sprite_url,
        transparent_sprite_url=transparent_url,
        grid_size=grid,
        warnings=warnings,
    )
