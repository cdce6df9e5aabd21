from typing import Dict, Tuple

from imagestore.consts import FULL_SIZE, IMAGE_SIZE


def plan_sizes(width: int, height: int) -> Dict[str, int]:
    """Find all ladder sizes smaller than or equal to the image's longer side.

    Returns a dict with the same shape as IMAGE_SIZE, in ladder order, with
    sizes the image cannot fill removed.
    """
    longest = max(width, height)
    return {key: value for key, value in IMAGE_SIZE.items() if value <= longest}


def resize_plan(width: int, height: int) -> Dict[str, int]:
    """Sizes to generate as resized renditions (XXL is the original itself)."""
    return {k: v for k, v in plan_sizes(width, height).items() if k != FULL_SIZE}


def resized_dimensions(width: int, height: int, target: int) -> Tuple[int, int]:
    """Scale by the longer side so that it equals ``target``, keeping aspect ratio."""
    if width >= height:
        return target, max(1, round(height * target / width))
    return max(1, round(width * target / height)), target
