"""
Tests for the showcase index, batch generator and showcase processor.

Run with: python -m pytest api/tests/test_showcase.py -v
"""

import asyncio
import io
import json
from unittest.mock import patch

import httpx
import pytest
from PIL import Image

from falsprite import batch_generate, process_showcase
from falsprite.config import Endpoints
from falsprite.process_showcase import ProcessOptions, process_all, process_item
from falsprite.showcase import (
    ShowcaseRecord,
    load_showcase,
    save_showcase,
    slugify,
    sprite_filename,
)

QUEUE = "https://queue.fal.run"
DIRECT = "https://fal.run"
INITIATE_URL = "https://rest.alpha.fal.ai/storage/upload/initiate"
UPLOAD_URL = "https://upload.example/put/1"
UPLOADED_URL = "https://fal.media/files/uploaded.png"
TRANSPARENT_URL = "https://fal.media/files/transparent.png"
REMOVE_BG = f"{DIRECT}/{Endpoints.REMOVE_BG}"


def run(coro):
    return asyncio.run(coro)


def sheet_png(size: int = 40) -> bytes:
    sheet = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    half = size // 2
    colors = [(200, 40, 40), (40, 200, 40), (40, 40, 200), (200, 200, 40)]
    for color, (x, y) in zip(colors, [(0, 0), (half, 0), (0, half), (half, half)]):
        sheet.paste(color + (255,), (x + 4, y + 4, x + half - 4, y + half - 4))
    buffer = io.BytesIO()
    sheet.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def public_dir(tmp_path):
    (tmp_path / "showcase").mkdir()
    (tmp_path / "showcase" / "001-fox.png").write_bytes(sheet_png())
    return tmp_path


@pytest.fixture
def record():
    return ShowcaseRecord(prompt="a fox", sprite_url="/showcase/001-fox.png", grid_size=2)


def script_bria(fake_fal, transparent_bytes: bytes):
    fake_fal.json("POST", INITIATE_URL, {"upload_url": UPLOAD_URL, "file_url": UPLOADED_URL})
    fake_fal.on("PUT", UPLOAD_URL, httpx.Response(200))
    fake_fal.json("POST", REMOVE_BG, {"image": {"url": TRANSPARENT_URL}})
    fake_fal.on("GET", TRANSPARENT_URL, httpx.Response(200, content=transparent_bytes))


# ============================================================================
# INDEX
# ============================================================================

class TestShowcaseIndex:

    def test_camel_case_round_trip(self, tmp_path):
        path = tmp_path / "showcase.json"
        record = ShowcaseRecord(
            prompt="a fox",
            prompt_rewritten="CHARACTER: a fox",
            sprite_url="/showcase/000-a-fox.png",
            grid_size=3,
            generated_at="2026-01-01T00:00:00+00:00",
        )

        save_showcase(path, [record])

        raw = json.loads(path.read_text(encoding="utf-8"))
        assert raw == [{
            "prompt": "a fox",
            "promptRewritten": "CHARACTER: a fox",
            "spriteUrl": "/showcase/000-a-fox.png",
            "gridSize": 3,
            "generatedAt": "2026-01-01T00:00:00+00:00",
        }]
        assert load_showcase(path) == [record]
        assert not (tmp_path / "showcase.json.tmp").exists()

    def test_unknown_fields_survive(self, tmp_path):
        path = tmp_path / "showcase.json"
        path.write_text(json.dumps([{"spriteUrl": "/showcase/a.png", "featured": True}]), encoding="utf-8")

        save_showcase(path, load_showcase(path))

        assert json.loads(path.read_text(encoding="utf-8"))[0]["featured"] is True

    def test_missing_file_is_empty(self, tmp_path):
        assert load_showcase(tmp_path / "nope.json") == []

    def test_non_array_rejected(self, tmp_path):
        path = tmp_path / "showcase.json"
        path.write_text('{"spriteUrl": "x"}', encoding="utf-8")
        with pytest.raises(ValueError):
            load_showcase(path)

    def test_filenames(self):
        assert slugify("Baby Dragon, pixel art!") == "baby-dragon-pixel-art-"
        assert sprite_filename(7, "Crystal Fox") == "007-crystal-fox.png"
        assert len(slugify("x" * 100)) == 40


# ============================================================================
# PROCESSOR
# ============================================================================

class TestProcessItem:

    def test_removes_background_and_builds_gif(self, make_client, fake_fal, public_dir, record):
        script_bria(fake_fal, sheet_png())

        result = run(process_item(make_client(), record, ProcessOptions(public_dir=public_dir, frame_size=16)))

        assert result.ok, result.error
        assert result.steps == ["bria", "gif"]
        assert result.record.transparent_url == "/showcase/001-fox-transparent.png"
        assert result.record.gif_url == "/showcase/001-fox.gif"
        assert (public_dir / "showcase" / "001-fox-transparent.png").read_bytes() == sheet_png()
        gif = Image.open(public_dir / "showcase" / "001-fox.gif")
        assert gif.n_frames == 4
        assert gif.size == (16, 16)
        assert fake_fal.calls("PUT", UPLOAD_URL)[0].content == sheet_png()
        assert fake_fal.body_of(fake_fal.calls("POST", REMOVE_BG)[0]) == {"image_url": UPLOADED_URL}
        # Input record is left untouched
        assert record.transparent_url is None

    def test_cached_outputs_are_reused(self, make_client, fake_fal, public_dir, record):
        (public_dir / "showcase" / "001-fox-transparent.png").write_bytes(sheet_png())
        (public_dir / "showcase" / "001-fox.gif").write_bytes(b"GIF89a-old")
        cached = record.model_copy(update={
            "transparent_url": "/showcase/001-fox-transparent.png",
            "gif_url": "/showcase/001-fox.gif",
        })

        result = run(process_item(make_client(), cached, ProcessOptions(public_dir=public_dir)))

        assert result.ok
        assert result.steps == ["cached", "gif(cached)"]
        assert fake_fal.requests == []
        assert (public_dir / "showcase" / "001-fox.gif").read_bytes() == b"GIF89a-old"

    def test_regen_gif(self, make_client, fake_fal, public_dir, record):
        (public_dir / "showcase" / "001-fox-transparent.png").write_bytes(sheet_png())
        (public_dir / "showcase" / "001-fox.gif").write_bytes(b"GIF89a-old")
        cached = record.model_copy(update={
            "transparent_url": "/showcase/001-fox-transparent.png",
            "gif_url": "/showcase/001-fox.gif",
        })
        options = ProcessOptions(public_dir=public_dir, frame_size=16, regen_gif=True)

        result = run(process_item(make_client(), cached, options))

        assert result.steps == ["cached", "gif"]
        assert result.gif_bytes > 0
        assert (public_dir / "showcase" / "001-fox.gif").read_bytes() != b"GIF89a-old"

    def test_keeps_partial_progress(self, make_client, fake_fal, public_dir, record):
        script_bria(fake_fal, b"not a png")

        result = run(process_item(make_client(), record, ProcessOptions(public_dir=public_dir)))

        assert not result.ok
        assert "Unreadable image" in result.error
        assert result.record.transparent_url == "/showcase/001-fox-transparent.png"
        assert result.record.gif_url is None

    def test_bria_failure(self, make_client, fake_fal, public_dir, record):
        fake_fal.json("POST", INITIATE_URL, {"upload_url": UPLOAD_URL, "file_url": UPLOADED_URL})
        fake_fal.on("PUT", UPLOAD_URL, httpx.Response(200))
        fake_fal.json("POST", REMOVE_BG, {"error": "overloaded"}, status=503)

        result = run(process_item(make_client(), record, ProcessOptions(public_dir=public_dir)))

        assert result.error == "BRIA failed (503): overloaded"
        assert result.record.transparent_url is None

    def test_missing_sprite_file(self, make_client, public_dir):
        missing = ShowcaseRecord(sprite_url="/showcase/404.png")

        result = run(process_item(make_client(), missing, ProcessOptions(public_dir=public_dir)))

        assert result.error == "File not found: /showcase/404.png"

    def test_process_all_writes_index_per_chunk(self, make_client, fake_fal, public_dir, record):
        script_bria(fake_fal, sheet_png())
        index_path = public_dir / "showcase.json"
        missing = ShowcaseRecord(prompt="ghost", sprite_url="/showcase/404.png")

        results = run(process_all(make_client(), [record, missing], ProcessOptions(public_dir=public_dir, frame_size=16),
                                  concurrency=1, index_path=index_path))

        assert [r.ok for r in results] == [True, False]
        saved = load_showcase(index_path)
        assert saved[0].gif_url == "/showcase/001-fox.gif"
        assert saved[1].gif_url is None

    def test_cli_requires_key(self, monkeypatch, tmp_path):
        monkeypatch.delenv("FAL_KEY", raising=False)
        args = process_showcase.parse_args(["--showcase-json", str(tmp_path / "s.json")])
        assert run(process_showcase.main_async(args)) == 1


# ============================================================================
# BATCH GENERATOR
# ============================================================================

SPRITE_SUBMIT = f"{QUEUE}/{Endpoints.SPRITE}"
SHEET_URL = "https://fal.media/files/sheet.png"


def script_sprite(fake_fal):
    fake_fal.json("POST", SPRITE_SUBMIT, {"request_id": "s1"})
    fake_fal.json("GET", f"{SPRITE_SUBMIT}/requests/s1/status", {"status": "COMPLETED"})
    fake_fal.json("GET", f"{SPRITE_SUBMIT}/requests/s1", {"images": [{"url": SHEET_URL}]})
    fake_fal.on("GET", SHEET_URL, httpx.Response(200, content=b"PNG" * 512))


class TestBatchGenerate:

    def test_generate_one(self, make_client, fake_fal, tmp_path):
        script_sprite(fake_fal)

        result = run(batch_generate.generate_one(make_client(), "Crystal Fox", 3, 4, tmp_path))

        assert result.ok
        assert result.size_bytes == 1536
        assert (tmp_path / "003-crystal-fox.png").read_bytes() == b"PNG" * 512
        assert result.record.sprite_url == "/showcase/003-crystal-fox.png"
        # No rewrite route scripted: the original prompt is kept
        assert result.record.prompt_rewritten == "Crystal Fox"
        assert result.record.grid_size == 4

    def test_generate_one_failure(self, make_client, fake_fal, tmp_path):
        fake_fal.json("POST", SPRITE_SUBMIT, {"error": "rate limited"}, status=429)

        result = run(batch_generate.generate_one(make_client(), "Crystal Fox", 0, 4, tmp_path))

        assert not result.ok
        assert "rate limited" in result.error
        assert list(tmp_path.iterdir()) == []

    def test_run_batch_aggregates_results(self, make_client, fake_fal, tmp_path):
        script_sprite(fake_fal)

        results = run(batch_generate.run_batch(make_client(), ["a", "b", "c"], 2, tmp_path,
                                               start_index=10, concurrency=2))

        assert [r.ok for r in results] == [True, True, True]
        assert [r.record.sprite_url for r in results] == [
            "/showcase/010-a.png", "/showcase/011-b.png", "/showcase/012-c.png",
        ]

    def test_unrequestable_sprite_url_fails_only_that_task(self, make_client, fake_fal, tmp_path):
        fake_fal.json("POST", SPRITE_SUBMIT, {"request_id": "s1"})
        fake_fal.json("GET", f"{SPRITE_SUBMIT}/requests/s1/status", {"status": "COMPLETED"})
        fake_fal.json("GET", f"{SPRITE_SUBMIT}/requests/s1", {"images": [{"url": "https://fal.media/a\u0000.png"}]})

        results = run(batch_generate.run_batch(make_client(), ["a", "b"], 2, tmp_path,
                                               start_index=0, concurrency=2))

        assert [r.ok for r in results] == [False, False]
        assert all("No image URL" in r.error for r in results)

    def test_index_saved_after_each_chunk(self, make_client, fake_fal, tmp_path):
        script_sprite(fake_fal)
        index_path = tmp_path / "showcase.json"
        existing = [ShowcaseRecord(prompt="old", sprite_url="/showcase/000-old.png")]
        saved_counts = []
        real_save = batch_generate.save_showcase

        def recording_save(path, records):
            saved_counts.append(len(records))
            real_save(path, records)

        with patch.object(batch_generate, "save_showcase", recording_save):
            run(batch_generate.run_batch(make_client(), ["a", "b", "c"], 2, tmp_path, start_index=1,
                                         concurrency=2, existing=existing, index_path=index_path))

        assert saved_counts == [3, 4]
        saved = load_showcase(index_path)
        assert [r.sprite_url for r in saved] == [
            "/showcase/000-old.png", "/showcase/001-a.png", "/showcase/002-b.png", "/showcase/003-c.png",
        ]

    def test_cli_requires_key(self, monkeypatch, tmp_path):
        monkeypatch.delenv("FAL_KEY", raising=False)
        args = batch_generate.parse_args(["--showcase-dir", str(tmp_path)])
        assert run(batch_generate.main_async(args)) == 1
