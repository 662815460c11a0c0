"""Hunt and participation state machines.

Participation: in_progress -> completed (terminal). "Not joined" is the
absence of a row.
Hunt: draft -> active -> completed | expired.
Transitions are validated here and nowhere else.
"""

from __future__ import annotations

from enum import StrEnum

from thunt.hunts.errors import ValidationError


class HuntStatus(StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


class ParticipationStatus(StrEnum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Difficulty(StrEnum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXPERT = "expert"


HUNT_TRANSITIONS: dict[HuntStatus, list[HuntStatus]] = {
    HuntStatus.DRAFT: [HuntStatus.ACTIVE],
    HuntStatus.ACTIVE: [HuntStatus.COMPLETED, HuntStatus.EXPIRED],
    HuntStatus.COMPLETED: [],
    HuntStatus.EXPIRED: [],
}

PARTICIPATION_TRANSITIONS: dict[ParticipationStatus, list[ParticipationStatus]] = {
    ParticipationStatus.IN_PROGRESS: [ParticipationStatus.COMPLETED],
    ParticipationStatus.COMPLETED: [],
}

MAX_HINTS_ALLOWED: dict[Difficulty, int] = {
    Difficulty.EASY: 3,
    Difficulty.MEDIUM: 2,
    Difficulty.HARD: 1,
    Difficulty.EXPERT: 0,
}


def max_hints_allowed(difficulty: str) -> int:
    """Hint budget for a whole participation at the given difficulty."""
    return MAX_HINTS_ALLOWED[Difficulty(difficulty)]


def validate_hunt_transition(current: str, target: str) -> None:
    """Raise ValidationError unless ``current -> target`` is a legal hunt transition."""
    valid = HUNT_TRANSITIONS.get(HuntStatus(current), [])
    if HuntStatus(target) not in valid:
        raise ValidationError(
            f"Invalid hunt transition: {current} -> {target}. "
            f"Valid transitions: {[s.value for s in valid]}"
        )


def validate_participation_transition(current: str, target: str) -> None:
    """Raise ValidationError unless ``current -> target`` is a legal participation transition."""
    valid = PARTICIPATION_TRANSITIONS.get(ParticipationStatus(current), [])
    if ParticipationStatus(target) not in valid:
        raise ValidationError(f"Invalid participation transition: {current} -> {target}")
