"""
Showcase index: the append-only JSON record of past generation runs.

The file is a JSON array of records with camelCase keys. Records are added
by the batch generator and enriched in place with `transparentUrl` and
`gifUrl` by the showcase processor.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ShowcaseRecord(BaseModel):
    class Config:
        populate_by_name = True
        extra = "allow"

    prompt: str = ""
    prompt_rewritten: str = Field(default="", alias="promptRewritten")
    sprite_url: str = Field(..., alias="spriteUrl")
    grid_size: int = Field(default=4, ge=2, le=6, alias="gridSize")
    generated_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        alias="generatedAt",
    )
    transparent_url: Optional[str] = Field(default=None, alias="transparentUrl")
    gif_url: Optional[str] = Field(default=None, alias="gifUrl")

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def slugify(text: str, max_length: int = 40) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text, flags=re.IGNORECASE).lower()[:max_length]


def sprite_filename(index: int, prompt: str) -> str:
    return f"{index:03d}-{slugify(prompt)}.png"


def load_showcase(path: Union[str, Path]) -> list[ShowcaseRecord]:
    """Read the index; a missing file is an empty index."""
    path = Path(path)
    if not path.exists():
        return []
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, list):
        raise ValueError(f"{path} must contain a JSON array")
    return [ShowcaseRecord.model_validate(item) for item in raw]


def save_showcase(path: Union[str, Path], records: list[ShowcaseRecord]) -> None:
    """Write the whole index atomically (write temp file, then replace)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump([r.to_json() for r in records], f, indent=2, ensure_ascii=False)
        f.write("\n")
    tmp_path.replace(path)
    logger.debug(f"Wrote {len(records)} records to {path}")
