"""
Style Loader - loads the prompt templates users pick from.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ValidationError

from .constants import PAIRED_STYLE_IDS

logger = logging.getLogger(__name__)

DEFAULT_STYLES_PATH = Path(__file__).parent.parent / "configs" / "styles.yml"


class Style(BaseModel):
    """A named prompt template."""
    id: str
    name: str
    prompt: str

    @property
    def images_per_task(self) -> int:
        """How many images one batch task of this style consumes."""
        return 2 if self.id in PAIRED_STYLE_IDS else 1


class StyleCatalog:
    """Ordered, id-addressable collection of styles."""

    def __init__(self, styles: List[Style]):
        self._styles = list(styles)
        self._by_id: Dict[str, Style] = {style.id: style for style in self._styles}

    def __len__(self) -> int:
        return len(self._styles)

    def __iter__(self):
        return iter(self._styles)

    def get(self, style_id: Optional[str]) -> Optional[Style]:
        if not style_id:
            return None
        return self._by_id.get(style_id)

    @property
    def default(self) -> Optional[Style]:
        return self._styles[0] if self._styles else None


def load_styles(config_path: Optional[str] = None) -> StyleCatalog:
    """Load the style catalogue from YAML."""
    path = Path(config_path) if config_path else DEFAULT_STYLES_PATH
    with open(path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    styles = []
    for entry in config.get("styles", []):
        try:
            styles.append(Style(**entry))
        except (TypeError, ValidationError) as e:
            logger.warning(f"⚠️ Skipping malformed style entry {entry!r}: {e}")

    logger.info(f"Loaded {len(styles)} styles from {path}")
    return StyleCatalog(styles)
