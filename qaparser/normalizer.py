"""
Text Normalizer & Line Filter
=============================
Cleans OCR encoding artifacts, splits raw text into trimmed non-empty lines,
and drops document noise (section headers, provenance banners, page labels,
lone page numbers) before the state machine ever sees it.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterator

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# ─── Glyph Repair ─────────────────────────────────────────────────────────────

# Mis-decoded glyphs produced by the source PDFs' broken font encodings
GLYPH_REPLACEMENTS: dict[str, str] = {
    "ð": "d",
    "Đ": "D",
    "ł": "l",
    "ŵ": "w",
    "Ŷ": "Y",
    "Þ": "b",
}

_GLYPH_TABLE = str.maketrans(GLYPH_REPLACEMENTS)

# Lone page number: "12", "12   "
LONE_NUMBER_PATTERN = re.compile(r"^[0-9]+\s*$")


# ─── Noise Configuration ──────────────────────────────────────────────────────


class NoiseConfig(BaseModel):
    """
    Vocabulary used to recognize header/footer noise.

    Keyword entries are compared against the uppercased line, so they are
    stored uppercased regardless of how they were written in a config file.
    """
    model_config = ConfigDict(frozen=True)

    header_prefixes: tuple[str, ...] = (
        "APPARATO",
        "SISTEMA",
        "DOMANDE AGGIUNTE",
    )
    provenance_substrings: tuple[str, ...] = (
        "SCARICATO DA",
        "PANIERI",
        "START OF OCR",
        "SCREENSHOT FOR PAGE",
    )
    page_label_pattern: re.Pattern = Field(
        default=re.compile(r"^(Pagina|pag\.)\s*\d+", re.IGNORECASE)
    )

    @field_validator("header_prefixes", "provenance_substrings", mode="after")
    @classmethod
    def _uppercase(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(v.upper() for v in value if v.strip())

    @field_validator("page_label_pattern", mode="before")
    @classmethod
    def _compile(cls, value):
        # Patterns loaded from a file are always matched case-insensitively
        if isinstance(value, str):
            try:
                return re.compile(value, re.IGNORECASE)
            except re.error as e:
                raise ValueError(f"Invalid page_label_pattern: {e}") from e
        return value

    @classmethod
    def from_file(cls, path: str) -> "NoiseConfig":
        """Load a noise vocabulary from a JSON file. Missing keys keep their defaults."""
        raw = Path(path).read_text(encoding="utf-8")
        config = cls.model_validate_json(raw)
        logger.info(
            f"Loaded noise config from {path}: "
            f"{len(config.header_prefixes)} header prefixes, "
            f"{len(config.provenance_substrings)} provenance substrings"
        )
        return config


DEFAULT_NOISE = NoiseConfig()


# ─── Normalization ────────────────────────────────────────────────────────────


def repair_glyphs(text: str) -> str:
    """Replace every known mis-decoded glyph with its intended letter."""
    return text.translate(_GLYPH_TABLE)


def split_lines(raw_text: str) -> list[str]:
    """Repair glyphs, normalize line endings, and return trimmed non-empty lines."""
    clean = repair_glyphs(raw_text).replace("\r\n", "\n")
    return [line.strip() for line in clean.split("\n") if line.strip()]


def is_noise(line: str, noise: NoiseConfig = DEFAULT_NOISE) -> bool:
    """Return ``True`` if ``line`` is header, footer, banner, or page-number noise."""
    upper = line.upper()

    if upper.startswith(noise.header_prefixes):
        return True
    if any(s in upper for s in noise.provenance_substrings):
        return True
    if noise.page_label_pattern.match(line):
        return True
    if LONE_NUMBER_PATTERN.match(line):
        return True
    return False


def normalize(raw_text: str, noise: NoiseConfig = DEFAULT_NOISE) -> Iterator[str]:
    """
    Yield the cleaned, noise-free lines of ``raw_text`` in order.

    The result is a one-shot iterator; materialize it with ``list()`` if it
    needs to be walked more than once.
    """
    for line in split_lines(raw_text):
        if is_noise(line, noise):
            logger.debug(f"Dropping noise line: {line!r}")
            continue
        yield line
