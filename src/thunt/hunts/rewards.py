"""Deterministic reward computation.

Per participant, at completion:
    base        = BASE_REWARD[difficulty]
    speed_bonus = base / 2 if rank <= 3 else 0
    hint_pen    = base / 10 * hints_used
    total       = max(0, floor(base + speed_bonus - hint_pen))

Per hunt, when the hunt completes: ranks 1/2/3 split the prize pool
50/30/20, truncated to whole currency units.

All arithmetic is integer so results are reproducible from the
persisted rank and hints_used alone.
"""

from __future__ import annotations

from dataclasses import dataclass

from thunt.hunts.states import Difficulty

BASE_REWARD: dict[Difficulty, int] = {
    Difficulty.EASY: 100,
    Difficulty.MEDIUM: 250,
    Difficulty.HARD: 500,
    Difficulty.EXPERT: 1000,
}

SPEED_BONUS_MAX_RANK = 3

# rank -> percent of prize_pool
PRIZE_SHARES: dict[int, int] = {1: 50, 2: 30, 3: 20}


@dataclass(frozen=True)
class RewardBreakdown:
    base: int
    speed_bonus: int
    hint_penalty: int
    total: int


def base_reward(difficulty: str) -> int:
    return BASE_REWARD[Difficulty(difficulty)]


def calculate_reward(difficulty: str, rank: int, hints_used: int) -> RewardBreakdown:
    """Compute a participant's completion reward.

    Works in tenths of a unit so the floor is exact:
    10*total = 10*base + 5*base*[rank<=3] - base*hints_used.
    """
    base = base_reward(difficulty)
    bonus_tenths = 5 * base if rank <= SPEED_BONUS_MAX_RANK else 0
    penalty_tenths = base * hints_used
    total_tenths = 10 * base + bonus_tenths - penalty_tenths
    return RewardBreakdown(
        base=base,
        speed_bonus=bonus_tenths // 10,
        hint_penalty=penalty_tenths // 10,
        total=max(0, total_tenths // 10),
    )


def prize_for_rank(prize_pool: int, rank: int | None) -> int:
    """Share of the hunt prize pool for a finishing rank (0 outside the top 3)."""
    if rank is None:
        return 0
    share = PRIZE_SHARES.get(rank, 0)
    return prize_pool * share // 100


def prize_table(prize_pool: int) -> dict[int, int]:
    """Full top-3 payout table for a prize pool."""
    return {rank: prize_for_rank(prize_pool, rank) for rank in PRIZE_SHARES}
