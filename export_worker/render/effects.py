"""Simple per-clip effects and overlay placement presets."""

import logging
from typing import Any

from export_worker.render.graph import Filter

logger = logging.getLogger(__name__)

DEFAULT_MARGIN = 20

_NAMED_EFFECTS: dict[str, Filter] = {
    "grayscale": Filter.of("hue", s=0),
    "blur": Filter.of("gblur", sigma=10),
    "sharpen": Filter.of("unsharp"),
    "invert": Filter.of("negate"),
}


def _object_effect(effect: dict[str, Any]) -> Filter | None:
    kind = effect.get("type")
    if kind == "brightness":
        return Filter.of("eq", brightness=effect.get("value", 0))
    if kind == "contrast":
        return Filter.of("eq", contrast=effect.get("value", 1))
    if kind == "saturation":
        return Filter.of("eq", saturation=effect.get("value", 1))
    if kind == "crop":
        return Filter.of("crop", effect["w"], effect["h"], effect.get("x", 0), effect.get("y", 0))
    if kind == "scale":
        return Filter.of("scale", effect["w"], effect["h"], flags="bicubic")
    if kind == "boxblur":
        return Filter.of("boxblur", effect.get("luma", 5), effect.get("chroma", 5))
    return None


def effect_filters(effects: list[str | dict[str, Any]]) -> list[Filter]:
    """Map effect descriptors to filters. Unknown or incomplete effects are dropped."""
    filters: list[Filter] = []
    for effect in effects:
        if isinstance(effect, str):
            named = _NAMED_EFFECTS.get(effect)
        else:
            try:
                named = _object_effect(effect)
            except KeyError as e:
                logger.warning(f"[EFFECTS] Ignoring {effect.get('type')} effect missing {e}")
                named = None
        if named is not None:
            filters.append(named)
    return filters


def position_expressions(
    position: str | None,
    width: str = "W",
    height: str = "H",
    item_width: str = "w",
    item_height: str = "h",
    margin: int = DEFAULT_MARGIN,
) -> tuple[str, str]:
    """x/y expressions placing an item of (item_width, item_height) on the frame.

    A missing preset means bottom-right. Unrecognised presets are logged and
    also land bottom-right.
    """
    preset = (position or "bottom-right").lower()
    if preset == "top-left":
        return f"{margin}", f"{margin}"
    if preset == "top-right":
        return f"{width}-{item_width}-{margin}", f"{margin}"
    if preset == "bottom-left":
        return f"{margin}", f"{height}-{item_height}-{margin}"
    if preset in ("center", "middle"):
        return f"({width}-{item_width})/2", f"({height}-{item_height})/2"
    if preset != "bottom-right":
        logger.warning(f"[EFFECTS] Unknown position preset '{position}', using bottom-right")
    return f"{width}-{item_width}-{margin}", f"{height}-{item_height}-{margin}"
