"""
Prompt builders for the sprite sheet and rewrite models.
"""

import random

from .transcode import DEFAULT_GRID_SIZE

NUM_WORDS = {2: "two", 3: "three", 4: "four", 5: "five", 6: "six"}

SUBJECTS = [
    # cute creatures
    "baby dragon", "fluffy cloud cat", "crystal fox", "bouncy slime",
    "chubby penguin knight", "tiny fire spirit", "leaf bunny", "cosmic hamster",
    "sleepy moon bear", "cozy tea dragon", "sparkle unicorn", "thunder puppy",
    # friendly adventurers
    "mushroom alchemist", "flower fairy", "little robot companion", "starry owl wizard",
    "honey bee ranger", "cotton candy witch", "sunflower guardian", "pebble turtle sage",
    # cool but approachable
    "tiny samurai cat", "aurora fox mage", "bamboo panda warrior", "clockwork bird",
    "lavender wolf archer", "jade rabbit monk",
    # big and gentle
    "gentle stone giant", "friendly forest golem", "kind lava bear",
]

STYLES = [
    "clean pixel art", "vibrant anime", "cel-shaded cartoon", "pastel dreamlike",
    "watercolor wash", "retro arcade", "cozy storybook", "chibi kawaii",
    "neon glow", "8-bit classic", "Studio Ghibli inspired", "pop art bright",
]


def grid_word(grid_size: int) -> str:
    return NUM_WORDS.get(grid_size, NUM_WORDS[DEFAULT_GRID_SIZE])


def make_default_prompt(rng: random.Random = None) -> str:
    """Random subject + style used when the caller leaves the prompt blank."""
    rng = rng or random
    return f"{rng.choice(SUBJECTS)}, {rng.choice(STYLES)}, isometric action RPG"


def build_sprite_prompt(base_prompt: str, grid_size: int = DEFAULT_GRID_SIZE) -> str:
    w = grid_word(grid_size)
    return "\n".join([
        "STRICT TECHNICAL REQUIREMENTS FOR THIS IMAGE:",
        "",
        f"FORMAT: A single image containing a {w}-by-{w} grid of equally sized cells.",
        "Every cell must be the exact same dimensions, perfectly aligned, with no gaps or overlap.",
        "",
        "FORBIDDEN: No text, numbers, letters, labels, watermarks or UI elements anywhere.",
        "The image contains ONLY the character illustrations in the grid cells.",
        "",
        "CONSISTENCY: The same single character appears in every cell, with the same proportions,",
        "art style and camera angle. Isometric three-quarter view, full body visible,",
        "strong clean silhouette against a plain solid flat-color background.",
        "",
        "ANIMATION FLOW: Cells read left-to-right, top-to-bottom as one continuous motion.",
        "The last cell of a row flows into the first cell of the next row without a jump,",
        f"each row holds {w} phases of the motion, and the very last cell loops back",
        "seamlessly to the very first cell.",
        "",
        "CHARACTER AND ANIMATION DIRECTION:",
        base_prompt,
    ])


def build_rewrite_system_prompt(grid_size: int = DEFAULT_GRID_SIZE) -> str:
    w = grid_word(grid_size)
    return "\n".join([
        "You are an animation director and character designer for a sprite sheet pipeline.",
        "Given a character concept, return exactly two sections and nothing else:",
        "",
        "CHARACTER: A vivid, specific visual description of the character's appearance.",
        "",
        f"CHOREOGRAPHY: A {w}-beat continuous animation loop unique to this character.",
        "Each beat is one row of the sheet; describe body position, weight and motion arc",
        "in one sentence. The last beat transitions seamlessly back into the first.",
        "",
        "RULES:",
        "- Never use numbers or digits.",
        "- Never mention grids, pixels, frames, cells, sprite sheets or image generation.",
        "- Write as if directing a real actor through a motion capture session.",
    ])


def build_rewrite_user_prompt(base_prompt: str, grid_size: int = DEFAULT_GRID_SIZE) -> str:
    return (
        f"Design the character and choreograph a {grid_word(grid_size)}-beat "
        f"animation loop for: {base_prompt}"
    )
