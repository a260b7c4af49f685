"""
FalSprite showcase processor.

For every record in the showcase index: remove the sprite sheet background
(upload → BRIA → download) and build a looping animated GIF from the
transparent sheet. Existing outputs are reused unless --regen-gif is given.
The index is rewritten after every chunk so finished items survive a later
failure.

Usage:
    python -m falsprite.process_showcase --key YOUR_FAL_KEY [--concurrency 5] [--gif-size 200]
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .config import Endpoints, PUBLIC_DIR, SHOWCASE_JSON, get_fal_key
from .errors import FalspriteError, RemoteError
from .extract import extract_image_url, pick_error_message
from .fal_client import FalClient
from .showcase import ShowcaseRecord, load_showcase, save_showcase
from .transcode import DEFAULT_FPS, transcode_sprite_sheet

logger = logging.getLogger(__name__)


@dataclass
class ItemResult:
    """Updated record plus what happened to it."""
    record: ShowcaseRecord
    steps: list[str] = field(default_factory=list)
    gif_bytes: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ProcessOptions:
    public_dir: Path = PUBLIC_DIR
    frame_size: int = 200
    fps: float = DEFAULT_FPS
    regen_gif: bool = False

    @property
    def showcase_dir(self) -> Path:
        return self.public_dir / "showcase"


async def remove_background_remote(client: FalClient, sprite_bytes: bytes, filename: str) -> bytes:
    """Upload a sprite sheet, run background removal and download the result."""
    remote_url = await client.upload_bytes(sprite_bytes, "image/png", filename)

    outcome = await client.run_direct(Endpoints.REMOVE_BG, {"image_url": remote_url})
    if not outcome.ok:
        raise RemoteError(
            f"BRIA failed ({outcome.status}): {pick_error_message(outcome.data, 'no detail')}",
            status=outcome.status,
            stage=outcome.stage.value,
        )

    transparent_url = extract_image_url(outcome.data)
    if not transparent_url:
        raise RemoteError("BRIA returned no image URL")
    return await client.download(transparent_url)


async def process_item(client: FalClient, record: ShowcaseRecord,
                       options: ProcessOptions) -> ItemResult:
    """
    Background-remove and animate one showcase record.

    Never raises for pipeline failures: the returned result carries the
    error and whatever progress was already written to disk.
    """
    updated = record.model_copy()
    result = ItemResult(record=updated)
    sprite_file = options.public_dir / record.sprite_url.lstrip("/")

    try:
        if not sprite_file.exists():
            raise FalspriteError(f"File not found: {record.sprite_url}")

        stem = sprite_file.stem
        transparent_file = options.showcase_dir / f"{stem}-transparent.png"
        gif_file = options.showcase_dir / f"{stem}.gif"

        # Step 1: Background removal
        if record.transparent_url and transparent_file.exists():
            result.steps.append("cached")
            transparent_bytes = transparent_file.read_bytes()
        else:
            result.steps.append("bria")
            transparent_bytes = await remove_background_remote(
                client, sprite_file.read_bytes(), sprite_file.name
            )
            transparent_file.parent.mkdir(parents=True, exist_ok=True)
            transparent_file.write_bytes(transparent_bytes)
            updated.transparent_url = f"/showcase/{transparent_file.name}"

        # Step 2: Animated GIF
        if record.gif_url and gif_file.exists() and not options.regen_gif:
            result.steps.append("gif(cached)")
        else:
            result.steps.append("gif")
            gif = await asyncio.to_thread(
                transcode_sprite_sheet,
                transparent_bytes,
                record.grid_size,
                options.frame_size,
                options.fps,
            )
            gif_file.write_bytes(gif)
            updated.gif_url = f"/showcase/{gif_file.name}"
            result.gif_bytes = len(gif)

    except (FalspriteError, OSError) as e:
        logger.debug(f"Processing {record.sprite_url} failed: {e}")
        result.error = str(e)

    return result


async def process_all(
    client: FalClient,
    records: list[ShowcaseRecord],
    options: ProcessOptions,
    concurrency: int,
    index_path: Optional[Path] = None,
) -> list[ItemResult]:
    """
    Process records in chunks, writing the index after every chunk.

    Returns:
        One ItemResult per record, in index order.
    """
    records = list(records)
    results: list[ItemResult] = []

    for offset in range(0, len(records), concurrency):
        chunk = records[offset:offset + concurrency]
        chunk_results = await asyncio.gather(*[
            process_item(client, record, options) for record in chunk
        ])

        for j, item in enumerate(chunk_results):
            records[offset + j] = item.record
            label = (item.record.prompt or "")[:42]
            position = offset + j + 1
            steps = "→".join(item.steps)
            if item.ok:
                size = f" {item.gif_bytes // 1024}KB" if item.gif_bytes else ""
                print(f"  [{position}/{len(records)}] {label}... {steps} ✓{size}")
            else:
                print(f"  [{position}/{len(records)}] {label}... {steps} ✗ {item.error[:60]}")
        results.extend(chunk_results)

        if index_path is not None:
            save_showcase(index_path, records)

    return results


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Background-remove and animate showcase sprites")
    parser.add_argument("--key", default=None, help="FAL API key (or set FAL_KEY env var)")
    parser.add_argument("--concurrency", type=int, default=5, help="Items processed at once (1-10)")
    parser.add_argument("--gif-size", type=int, default=200, help="GIF frame size in px (64-512)")
    parser.add_argument("--fps", type=float, default=DEFAULT_FPS, help="GIF frames per second")
    parser.add_argument("--regen-gif", action="store_true", help="Rebuild GIFs even when cached")
    parser.add_argument("--public-dir", type=Path, default=PUBLIC_DIR)
    parser.add_argument("--showcase-json", type=Path, default=SHOWCASE_JSON)
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    api_key = get_fal_key(args.key)
    if not api_key:
        print("Usage: python -m falsprite.process_showcase --key YOUR_FAL_KEY "
              "[--concurrency 5] [--gif-size 200]", file=sys.stderr)
        return 1

    try:
        records = load_showcase(args.showcase_json)
    except (OSError, ValueError) as e:
        print(f"  Could not read {args.showcase_json}: {e}", file=sys.stderr)
        return 1

    concurrency = max(1, min(10, args.concurrency))
    options = ProcessOptions(
        public_dir=args.public_dir,
        frame_size=max(64, min(512, args.gif_size)),
        fps=args.fps,
        regen_gif=args.regen_gif,
    )

    print("\n  FalSprite Showcase Processor")
    print(f"  Items: {len(records)}")
    print(f"  Concurrency: {concurrency}")
    print(f"  GIF frame size: {options.frame_size}px\n")

    async with FalClient(api_key) as client:
        results = await process_all(client, records, options, concurrency, args.showcase_json)

    completed = sum(1 for r in results if r.ok)
    print(f"\n  Done: {completed} processed, {len(results) - completed} failed")
    print(f"  File: {args.showcase_json}\n")
    return 0


def main(argv=None) -> int:
    """Main entry point for CLI usage."""
    logging.basicConfig(level=logging.INFO)
    args = parse_args(argv)
    return asyncio.run(main_async(args))


if __name__ == "__main__":
    sys.exit(main())
