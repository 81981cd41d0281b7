"""Static catalogs for aspect ratios, styles and quality levels."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True, slots=True)
class AspectRatio:
    """Named output size offered in the settings panel."""

    name: str
    width: int
    height: int

    @property
    def label(self) -> str:
        return f"{self.name}（{self.width}×{self.height}）"


@dataclass(frozen=True, slots=True)
class StylePreset:
    """Style id, its display name and the hint appended to the prompt."""

    id: str
    name: str
    positive: str = ""


@dataclass(frozen=True, slots=True)
class QualityPreset:
    """Quality id with display text and the hint passed to the service."""

    id: str
    name: str
    description: str = ""
    hint: str = ""

    @property
    def label(self) -> str:
        return f"{self.name}（{self.description}）" if self.description else self.name


ASPECT_RATIOS: Tuple[AspectRatio, ...] = (
    AspectRatio("1:1", 1024, 1024),
    AspectRatio("4:3", 1024, 768),
    AspectRatio("3:4", 768, 1024),
    AspectRatio("16:9", 1024, 576),
    AspectRatio("9:16", 576, 1024),
)

DEFAULT_STYLES: Tuple[StylePreset, ...] = (
    StylePreset("default", "默认"),
    StylePreset("anime", "动漫", "anime style, vibrant colors, clean line art"),
    StylePreset("realistic", "写实", "photorealistic, natural lighting, fine detail"),
    StylePreset("artistic", "艺术", "painterly, expressive brushwork, fine art composition"),
    StylePreset("cyberpunk", "赛博朋克", "cyberpunk, neon lights, futuristic city, high contrast"),
)

QUALITIES: Tuple[QualityPreset, ...] = (
    QualityPreset("standard", "标准", "快速生成"),
    QualityPreset("high", "高清", "更高质量", "high detail"),
    QualityPreset("ultra", "超清", "最佳效果", "ultra detailed, 8k, masterpiece"),
)


def find_aspect_ratio(name: str) -> Optional[AspectRatio]:
    """Return the aspect ratio called ``name`` if it is in the catalog."""
    for ratio in ASPECT_RATIOS:
        if ratio.name == name:
            return ratio
    return None


def match_aspect_ratio(width: int, height: int) -> Optional[AspectRatio]:
    """Return the catalog entry with exactly these dimensions."""
    for ratio in ASPECT_RATIOS:
        if ratio.width == width and ratio.height == height:
            return ratio
    return None


def find_quality(quality_id: str) -> Optional[QualityPreset]:
    for preset in QUALITIES:
        if preset.id == quality_id:
            return preset
    return None


def quality_name(quality_id: str) -> str:
    preset = find_quality(quality_id)
    return preset.name if preset else quality_id


class StylePresetRegistry:
    """In-memory registry of style presets keyed by id."""

    def __init__(self, presets: Tuple[StylePreset, ...] = DEFAULT_STYLES) -> None:
        self._presets: Dict[str, StylePreset] = {}
        for preset in presets:
            self.add(preset)

    def load_from_file(self, path: Path) -> None:
        """Add or override presets from a JSON array file."""
        if not path.exists():
            return
        with path.open("r", encoding="utf-8") as fp:
            data = json.load(fp)
        for entry in data:
            preset_id = entry["id"]
            self.add(
                StylePreset(
                    id=preset_id,
                    name=entry.get("name", preset_id),
                    positive=entry.get("positive", ""),
                )
            )

    def add(self, preset: StylePreset) -> None:
        """Register a new style preset."""
        self._presets[preset.id] = preset

    def list_presets(self) -> List[StylePreset]:
        """Return all registered presets."""
        return list(self._presets.values())

    def get(self, preset_id: str) -> StylePreset:
        """Retrieve a preset by id."""
        try:
            return self._presets[preset_id]
        except KeyError as exc:
            raise KeyError(f"Style preset '{preset_id}' not found") from exc

    def find(self, preset_id: str) -> Optional[StylePreset]:
        return self._presets.get(preset_id)

    def display_name(self, preset_id: str) -> str:
        """Resolve the label shown for a stored style id."""
        preset = self._presets.get(preset_id)
        return preset.name if preset else preset_id
