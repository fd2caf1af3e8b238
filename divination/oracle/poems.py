"""Fortune poem data loader and validator.

The poem file is a JSON or YAML list of poems. Loading is fail-soft at
startup: a missing or invalid file leaves the service running with
poems unavailable, and analysis requests report it.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class FortunePoem(BaseModel):
    """One fortune poem (籤詩)."""

    model_config = ConfigDict(extra="allow")

    poemNumber: int = Field(..., ge=1, description="Poem number")
    briefMeaning: str = Field(..., min_length=1, description="Short meaning used for matching")
    poemText1: str = Field(..., min_length=1, description="Poem line 1")
    poemText2: str = Field(..., min_length=1, description="Poem line 2")
    poemText3: str = Field(..., min_length=1, description="Poem line 3")
    poemText4: str = Field(..., min_length=1, description="Poem line 4")


class PoemDataError(ValueError):
    """Poem data file is missing or malformed."""


def _read_file(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        return yaml.safe_load(text)
    return json.loads(text)


def load_poems(path: str | Path) -> list[FortunePoem]:
    """Load and validate fortune poems.

    Args:
        path: Path to a .json, .yaml or .yml file

    Returns:
        Validated poems in file order

    Raises:
        PoemDataError: If the file can't be read or doesn't hold a non-empty poem list
    """
    path = Path(path)
    try:
        data = _read_file(path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise PoemDataError(f"Cannot read poem data from {path}: {e}") from e

    if not isinstance(data, list) or not data:
        raise PoemDataError(f"Poem data in {path} must be a non-empty list")

    try:
        return [FortunePoem.model_validate(item) for item in data]
    except ValidationError as e:
        raise PoemDataError(f"Poem data in {path} is incomplete: {e}") from e


class PoemLibrary:
    """Loaded poems plus lookups used by poem matching."""

    def __init__(self, poems: list[FortunePoem] | None = None) -> None:
        self.poems: list[FortunePoem] = poems or []

    @classmethod
    def from_path(cls, path: str | Path) -> "PoemLibrary":
        """Load poems, logging and returning an empty library on failure."""
        try:
            poems = load_poems(path)
        except PoemDataError as e:
            logger.error(f"Failed to load fortune poems: {e}")
            return cls()
        logger.info(f"Loaded {len(poems)} fortune poems from {path}")
        return cls(poems)

    @property
    def loaded(self) -> bool:
        return bool(self.poems)

    def __len__(self) -> int:
        return len(self.poems)

    def by_index(self, index: Any) -> FortunePoem | None:
        # bool is an int subclass; a model answering true is not an index
        if isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(self.poems):
            return self.poems[index]
        return None

    def by_number(self, number: Any) -> FortunePoem | None:
        if not isinstance(number, int) or isinstance(number, bool):
            return None
        return next((poem for poem in self.poems if poem.poemNumber == number), None)

    def brief_meanings(self) -> list[dict[str, Any]]:
        """Index, number and short meaning of every poem."""
        return [
            {"index": i, "poemNumber": poem.poemNumber, "meaning": poem.briefMeaning}
            for i, poem in enumerate(self.poems)
        ]
