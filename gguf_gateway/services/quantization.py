"""Quantization ranking for GGUF weight variants.

When a model ships several GGUF files (Q4_K_M, Q8_0, F16, shards...), the
gateway picks one the way Ollama does: balanced 4/5-bit K-quants first, then
higher fidelity, then smaller lossy variants, then the IQ family. Shards and
auxiliary files always sort last.

The order is total: ties on tier are broken by label, then by path.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path


# =============================================================================
# Preference Table (lower = preferred)
# =============================================================================

QUANTIZATION_PRIORITY: dict[str, int] = {
    # Balanced mid-size variants
    "Q4_K_M": 1,
    "Q4_0": 2,
    "Q5_K_M": 3,
    "Q4_K_S": 4,
    "Q5_K_L": 5,
    "Q5_K_S": 6,
    "Q5_K": 7,
    # Higher fidelity / larger
    "Q6_K": 8,
    "Q5_1": 9,
    "Q5_0": 10,
    "Q8_0": 11,
    "Q4_K_L": 12,
    "Q4_K": 13,
    "Q4_1": 14,
    # Lower fidelity / smaller
    "Q3_K_XL": 15,
    "Q3_K_L": 16,
    "Q3_K_M": 17,
    "Q3_K_S": 18,
    "Q3_K": 19,
    "Q2_K": 20,
    "Q2_K_S": 21,
    # Unquantized
    "F32": 22,
    "F16": 23,
    "Q8_K": 24,
    # Integer-quantization variants
    "IQ4_NL": 25,
    "IQ4_XS": 26,
    "IQ3_XXS": 27,
    "IQ3_S": 28,
    "IQ3_M": 29,
    "IQ2_XXS": 30,
    "IQ2_XS": 31,
    "IQ2_S": 32,
    "IQ2_M": 33,
    "IQ1_S": 34,
    "IQ1_M": 35,
}

UNKNOWN_LABEL_TIER = 998
MISSING_LABEL_TIER = 999
AUXILIARY_FILE_TIER = 1000

UNKNOWN_QUANTIZATION = "Unknown"

# Tried in order against the upper-cased label
_NORMALIZATION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(Q\d+_K_[A-Z]+)"),
    re.compile(r"^(Q\d+_K)"),
    re.compile(r"^(Q\d+_\d+)"),
    re.compile(r"^(IQ\d+_[A-Z]+)"),
    re.compile(r"^(F\d+)"),
    re.compile(r"^(Q\d+)"),
)

# Every table key, longest first so Q4_K_M wins over Q4_K; a label must not
# be glued to other letters or digits (IQ4_XS never reads as Q4_...)
_FILENAME_LABEL_PATTERN = re.compile(
    r"(?<![A-Z0-9])("
    + "|".join(re.escape(k) for k in sorted(QUANTIZATION_PRIORITY, key=len, reverse=True))
    + r")(?![A-Z0-9])"
)

_AUXILIARY_MARKERS: tuple[str, ...] = ("-of-", "shard", "part")


# =============================================================================
# Candidate
# =============================================================================


@dataclass(frozen=True)
class GgufCandidate:
    """One GGUF file offered for a model."""

    path: str
    quantization_label: str
    is_main_model_file: bool = True
    size_bytes: int = 0

    @classmethod
    def from_path(cls, path: str | Path, size_bytes: int | None = None) -> GgufCandidate:
        """Build a candidate from a file name, reading its size when on disk."""
        file_path = Path(path)
        if size_bytes is None:
            size_bytes = file_path.stat().st_size if file_path.is_file() else 0
        return cls(
            path=str(file_path),
            quantization_label=extract_quantization_label(file_path.name),
            is_main_model_file=is_main_model_file(file_path.name),
            size_bytes=size_bytes,
        )


# =============================================================================
# File Name Helpers
# =============================================================================


def extract_quantization_label(filename: str) -> str:
    """Find the quantization label embedded in a GGUF file name.

    >>> extract_quantization_label("llama-3-8b.Q4_K_M.gguf")
    'Q4_K_M'
    """
    match = _FILENAME_LABEL_PATTERN.search(filename.upper())
    return match.group(1) if match else UNKNOWN_QUANTIZATION


def is_main_model_file(filename: str) -> bool:
    """False for split shards and auxiliary parts."""
    lowered = filename.lower()
    return not any(marker in lowered for marker in _AUXILIARY_MARKERS)


# =============================================================================
# Ranking
# =============================================================================


def normalize_label(label: str) -> str | None:
    """Reduce an unrecognised label to a known table key, if possible.

    "q4_k_m_imatrix" -> "Q4_K_M", "Q5_K_XXL" -> "Q5_K" (after the
    longer pattern misses the table).
    """
    upper = label.upper()
    for pattern in _NORMALIZATION_PATTERNS:
        match = pattern.match(upper)
        if match and match.group(1) in QUANTIZATION_PRIORITY:
            return match.group(1)
    return None


def quantization_tier(candidate: GgufCandidate) -> int:
    """Return the preference tier of a candidate (lower is better)."""
    if not candidate.is_main_model_file:
        return AUXILIARY_FILE_TIER

    label = candidate.quantization_label
    if not label or not label.strip():
        return MISSING_LABEL_TIER

    tier = QUANTIZATION_PRIORITY.get(label.upper())
    if tier is not None:
        return tier

    normalized = normalize_label(label)
    if normalized is not None:
        return QUANTIZATION_PRIORITY[normalized]
    return UNKNOWN_LABEL_TIER


def _sort_key(candidate: GgufCandidate) -> tuple[int, str, str]:
    return (
        quantization_tier(candidate),
        candidate.quantization_label or "",
        candidate.path,
    )


def rank_candidates(candidates: Iterable[GgufCandidate]) -> list[GgufCandidate]:
    """Order candidates from most to least preferred.

    Returns a new list; the input is not modified.
    """
    return sorted(candidates, key=_sort_key)


def best_candidate(candidates: Iterable[GgufCandidate]) -> GgufCandidate | None:
    """Most preferred candidate, or None when there are none."""
    ranked = rank_candidates(candidates)
    return ranked[0] if ranked else None


def main_models_in_preference_order(
    candidates: Iterable[GgufCandidate],
) -> list[GgufCandidate]:
    """Ranked candidates with shards and auxiliary files removed."""
    return [c for c in rank_candidates(candidates) if c.is_main_model_file]
