"""Answer matching and hint lookup for clues.

Each clue kind has exactly one matcher. Marketplace-object kinds compare
normalised identifiers, riddles compare normalised text, and QR clues
compare the scanned token with the stored secret in constant time.
Nothing here mutates state; the hint budget is enforced by the
participation service.
"""

from __future__ import annotations

import hmac
import re
from collections.abc import Callable
from enum import StrEnum

from thunt.db.models import Clue
from thunt.hunts.errors import ValidationError


class ClueKind(StrEnum):
    PRODUCT = "product"
    CATEGORY = "category"
    LOCATION = "location"
    RIDDLE = "riddle"
    IMAGE = "image"
    QR = "qr"


_SEPARATORS = re.compile(r"[^0-9a-z]+")
_WHITESPACE = re.compile(r"\s+")


def normalize_identifier(value: str) -> str:
    """'  Smart-Phone_X ' -> 'smart-phone-x'."""
    return _SEPARATORS.sub("-", value.casefold()).strip("-")


def normalize_text(value: str) -> str:
    """Case-fold and collapse internal whitespace."""
    return _WHITESPACE.sub(" ", value.casefold()).strip()


def _match_identifier(clue: Clue, answer: str) -> bool:
    submitted = normalize_identifier(answer)
    if not submitted:
        return False
    accepted = {normalize_identifier(v) for v in (clue.answer, clue.target_ref) if v}
    return submitted in accepted


def _match_text(clue: Clue, answer: str) -> bool:
    if not clue.answer:
        return False
    return normalize_text(answer) == normalize_text(clue.answer)


def _match_qr(clue: Clue, answer: str) -> bool:
    if not clue.qr_secret:
        return False
    return hmac.compare_digest(answer.strip().encode(), clue.qr_secret.encode())


MATCHERS: dict[ClueKind, Callable[[Clue, str], bool]] = {
    ClueKind.PRODUCT: _match_identifier,
    ClueKind.CATEGORY: _match_identifier,
    ClueKind.LOCATION: _match_identifier,
    ClueKind.IMAGE: _match_identifier,
    ClueKind.RIDDLE: _match_text,
    ClueKind.QR: _match_qr,
}


def check_answer(clue: Clue, answer: str) -> bool:
    """Return True if ``answer`` solves ``clue``."""
    return MATCHERS[ClueKind(clue.kind)](clue, answer)


def hint_levels(clue: Clue) -> int:
    """Number of hint levels the clue defines."""
    return len(clue.hints or [])


def get_hint(clue: Clue, level: int) -> str:
    """Return the hint text for ``level`` (1-based)."""
    available = hint_levels(clue)
    if level < 1 or level > available:
        raise ValidationError(
            f"Hint level {level} not available for this clue (levels 1..{available})"
            if available
            else "This clue has no hints"
        )
    return clue.hints[level - 1]
