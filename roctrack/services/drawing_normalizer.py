"""
Drawing identifier normalisation.

Canonical form is ``"<base> NNofMM"``: NN is the sheet, MM the total sheet
count, both two-digit zero-padded, separated from the base by one space.

    "P-94011_2 (1/3)"  → "P-94011_2 01of03"
    "P-26B07"          → "P-26B07 01of01"
    "P-26B07 01of01"   → "P-26B07 01of01"   (already canonical)
"""

import logging
import re
from dataclasses import dataclass

from roctrack.core.exceptions import FormatError

logger = logging.getLogger(__name__)

SHEET_NOTATION_RE = re.compile(r"^(.+?)\s*\((\d+)\s*/\s*(\d+)\)$")
CANONICAL_RE = re.compile(r"^(\S(?:.*\S)?)\s(\d{2})of(\d{2})$")

MAX_SHEETS = 99


@dataclass(frozen=True)
class DrawingRef:
    base: str
    sheet: int
    total: int

    @property
    def number(self) -> str:
        return f"{self.base} {self.sheet:02d}of{self.total:02d}"


@dataclass
class DrawingConversion:
    original: str
    converted: str
    has_sheet_notation: bool
    base: str
    sheet: int | None = None
    total: int | None = None
    flagged: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "original": self.original,
            "converted": self.converted,
            "has_sheet_notation": self.has_sheet_notation,
            "base": self.base,
            "sheet": self.sheet,
            "total": self.total,
            "flagged": self.flagged,
            "error": self.error,
        }


def _check_sheets(label: str, sheet: int, total: int) -> None:
    if sheet < 1 or total < 1:
        raise FormatError(f"Sheet numbers must start at 1 in {label!r}", value=label)
    if sheet > total:
        raise FormatError(f"Sheet {sheet} exceeds total {total} in {label!r}", value=label)
    if total > MAX_SHEETS:
        raise FormatError(f"More than {MAX_SHEETS} sheets in {label!r}", value=label)


def parse_drawing(label) -> DrawingRef:
    """
    Strict parser: accepts only canonical ``"<base> NNofMM"``.

    Raises:
        FormatError: anything else, including canonical-looking labels whose
            sheet is 0 or greater than the total.
    """
    text = label.strip() if isinstance(label, str) else ""
    match = CANONICAL_RE.match(text)
    if not match:
        raise FormatError(f"Not a canonical drawing number: {label!r}", value=label)
    base, sheet, total = match.group(1), int(match.group(2)), int(match.group(3))
    _check_sheets(text, sheet, total)
    return DrawingRef(base=base, sheet=sheet, total=total)


def is_canonical(label) -> bool:
    try:
        parse_drawing(label)
    except FormatError:
        return False
    return True


def _convert(label) -> DrawingConversion:
    if not isinstance(label, str) or not label.strip():
        raise FormatError("Drawing label is empty", value=label)
    # Embedded newlines and tabs from spreadsheet cells become single spaces
    text = re.sub(r"\s+", " ", label.strip())

    if CANONICAL_RE.match(text):
        ref = parse_drawing(text)
        return DrawingConversion(
            original=label, converted=ref.number, has_sheet_notation=True,
            base=ref.base, sheet=ref.sheet, total=ref.total,
        )

    match = SHEET_NOTATION_RE.match(text)
    if match:
        base = match.group(1).strip()
        sheet, total = int(match.group(2)), int(match.group(3))
        _check_sheets(text, sheet, total)
        ref = DrawingRef(base=base, sheet=sheet, total=total)
        return DrawingConversion(
            original=label, converted=ref.number, has_sheet_notation=True,
            base=base, sheet=sheet, total=total,
        )

    ref = DrawingRef(base=text, sheet=1, total=1)
    return DrawingConversion(
        original=label, converted=ref.number, has_sheet_notation=False,
        base=text, sheet=1, total=1,
    )


def normalize_drawing(label) -> str:
    """
    Convert a raw drawing label to its canonical number.

    Raises:
        FormatError: empty label or impossible sheet numbers.
    """
    return _convert(label).converted


def normalize_to_ref(label) -> DrawingRef:
    conv = _convert(label)
    return DrawingRef(base=conv.base, sheet=conv.sheet, total=conv.total)


def batch_normalize(labels) -> list[DrawingConversion]:
    """
    Convert many labels; a label that cannot be converted falls back to its
    original text with ``flagged=True`` instead of failing the batch.
    """
    results = []
    for label in labels:
        try:
            results.append(_convert(label))
        except FormatError as exc:
            logger.warning("Drawing label %r kept as-is: %s", label, exc.message)
            original = label if isinstance(label, str) else ("" if label is None else str(label))
            results.append(DrawingConversion(
                original=original, converted=original, has_sheet_notation=False,
                base=original.strip(), flagged=True, error=exc.message,
            ))
    return results


def unique_base_drawings(conversions) -> list[str]:
    """Distinct base drawing numbers, first-seen order."""
    seen = []
    for conv in conversions:
        if conv.base not in seen:
            seen.append(conv.base)
    return seen
