"""
FalSprite batch generator.

Generates COUNT random sprite sheets, downloads them into the showcase
directory and appends one record per success to the showcase index.

Usage:
    python -m falsprite.batch_generate --key YOUR_FAL_KEY [--count 10] [--grid 4] [--fresh]
"""

import argparse
import asyncio
import logging
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import SHOWCASE_DIR, SHOWCASE_JSON, get_fal_key
from .errors import FalspriteError, GenerationError
from .extract import extract_image_url, pick_error_message
from .fal_client import FalClient
from .generate import build_sprite_job, fal_rewriter, rewrite_prompt
from .prompts import build_sprite_prompt, make_default_prompt
from .showcase import ShowcaseRecord, load_showcase, save_showcase, sprite_filename
from .transcode import clamp_grid_size

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 20


@dataclass
class TaskResult:
    """Outcome of one generation task; aggregated by the caller."""
    prompt: str
    record: Optional[ShowcaseRecord] = None
    size_bytes: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.record is not None


async def generate_one(client: FalClient, prompt: str, index: int, grid_size: int,
                       showcase_dir: Path) -> TaskResult:
    """Rewrite, generate and download one sprite sheet."""
    try:
        warnings: list[str] = []
        rewritten = await rewrite_prompt(fal_rewriter(client), prompt, grid_size, warnings)

        outcome = await client.run_job(build_sprite_job(build_sprite_prompt(rewritten, grid_size)))
        if not outcome.ok:
            raise GenerationError(
                f"{outcome.stage.value} failed ({outcome.status}): "
                f"{pick_error_message(outcome.data, 'Sprite generation failed')}",
                status=outcome.status,
            )

        image_url = extract_image_url(outcome.data)
        if not image_url:
            raise GenerationError("No image URL in result")

        filename = sprite_filename(index, prompt)
        data = await client.download(image_url)
        (showcase_dir / filename).write_bytes(data)

        record = ShowcaseRecord(
            prompt=prompt,
            prompt_rewritten=rewritten,
            sprite_url=f"/showcase/{filename}",
            grid_size=grid_size,
        )
        return TaskResult(prompt=prompt, record=record, size_bytes=len(data))

    except (FalspriteError, OSError) as e:
        logger.debug(f"Generation failed for '{prompt}': {e}")
        return TaskResult(prompt=prompt, error=str(e))


async def run_batch(
    client: FalClient,
    prompts: list[str],
    grid_size: int,
    showcase_dir: Path,
    start_index: int,
    concurrency: int = DEFAULT_CONCURRENCY,
    existing: Optional[list[ShowcaseRecord]] = None,
    index_path: Optional[Path] = None,
) -> list[TaskResult]:
    """
    Run generation tasks in fixed-size chunks, awaiting each chunk fully
    before starting the next.

    When `index_path` is given, `existing` plus every success so far is
    written to it after each chunk.
    """
    records = list(existing or [])
    results: list[TaskResult] = []
    for offset in range(0, len(prompts), concurrency):
        chunk = prompts[offset:offset + concurrency]
        chunk_results = await asyncio.gather(*[
            generate_one(client, prompt, start_index + offset + j, grid_size, showcase_dir)
            for j, prompt in enumerate(chunk)
        ])
        for result in chunk_results:
            position = len(results) + 1
            if result.ok:
                records.append(result.record)
                print(f"  [{position}/{len(prompts)}] {result.prompt[:50]} ✓ {result.size_bytes // 1024}KB")
            else:
                print(f"  [{position}/{len(prompts)}] {result.prompt[:50]} ✗ {(result.error or '')[:60]}")
            results.append(result)

        if index_path is not None:
            save_showcase(index_path, records)
    return results


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a batch of showcase sprite sheets")
    parser.add_argument("--key", default=None, help="FAL API key (or set FAL_KEY env var)")
    parser.add_argument("--count", type=int, default=10, help="Number of sprites (1-200)")
    parser.add_argument("--grid", type=int, default=4, help="Grid size (2-6)")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY,
                        help="Sprites generated at once")
    parser.add_argument("--fresh", action="store_true", help="Clear existing showcase data first")
    parser.add_argument("--showcase-dir", type=Path, default=SHOWCASE_DIR)
    parser.add_argument("--showcase-json", type=Path, default=SHOWCASE_JSON)
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    api_key = get_fal_key(args.key)
    if not api_key:
        print("Usage: python -m falsprite.batch_generate --key YOUR_FAL_KEY "
              "[--count 10] [--grid 4] [--fresh]", file=sys.stderr)
        return 1

    count = max(1, min(200, args.count))
    grid = clamp_grid_size(args.grid)
    concurrency = max(1, args.concurrency)

    if args.fresh:
        print("\n  Clearing old showcase data...")
        if args.showcase_dir.exists():
            shutil.rmtree(args.showcase_dir)
        save_showcase(args.showcase_json, [])

    args.showcase_dir.mkdir(parents=True, exist_ok=True)
    existing = load_showcase(args.showcase_json)

    print("\n  FalSprite Batch Generator")
    print(f"  Generating {count} sprites @ {grid}x{grid} ({concurrency} concurrent)\n")

    prompts = [make_default_prompt() for _ in range(count)]
    async with FalClient(api_key) as client:
        results = await run_batch(client, prompts, grid, args.showcase_dir,
                                  start_index=len(existing), concurrency=concurrency,
                                  existing=existing, index_path=args.showcase_json)

    records = existing + [r.record for r in results if r.ok]

    succeeded = sum(1 for r in results if r.ok)
    print(f"\n  Done: {succeeded} succeeded, {len(results) - succeeded} failed")
    print(f"  Showcase: {len(records)} total entries")
    print(f"  File: {args.showcase_json}\n")
    return 0


def main(argv=None) -> int:
    """Main entry point for CLI usage."""
    logging.basicConfig(level=logging.INFO)
    args = parse_args(argv)
    return asyncio.run(main_async(args))


if __name__ == "__main__":
    sys.exit(main())
