"""Pydantic schemas for treasure hunt API requests and responses."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# --- Hunts ---


class HuntSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    status: str
    difficulty: str
    starts_at: datetime
    ends_at: datetime
    max_participants: int | None
    prize_pool: int


class HuntListResponse(BaseModel):
    hunts: list[HuntSummaryResponse]
    page: int
    per_page: int


class HuntDetailResponse(BaseModel):
    id: int
    name: str
    description: str | None
    status: str
    difficulty: str
    starts_at: datetime
    ends_at: datetime
    max_participants: int | None
    participant_count: int
    prize_pool: int
    prizes: dict[int, int]  # {rank: amount}
    max_hints: int
    total_clues: int


class HuntTransitionRequest(BaseModel):
    status: str  # active, completed, expired


class HuntTransitionResponse(BaseModel):
    id: int
    status: str
    started_at: datetime | None
    completed_at: datetime | None


# --- Participation ---


class ParticipationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    hunt_id: int
    user_id: int
    status: str
    current_clue_index: int
    clues_found: int
    incorrect_attempts: int
    hints_used: int
    started_at: datetime
    completed_at: datetime | None
    time_taken_seconds: float | None
    rank: int | None
    reward_amount: int | None


class CurrentClueResponse(BaseModel):
    clue_id: int
    order: int
    kind: str
    text: str
    image_url: str | None
    hint_levels: int


class ProgressResponse(BaseModel):
    participation_id: int
    hunt_id: int
    user_id: int
    status: str
    current_clue_index: int
    clues_found: int
    total_clues: int
    progress_percentage: float
    incorrect_attempts: int
    hints_used: int
    hints_remaining: int
    started_at: datetime
    completed_at: datetime | None
    time_taken_seconds: float | None
    rank: int | None
    reward: int | None
    current_clue: CurrentClueResponse | None = None


class AnswerRequest(BaseModel):
    answer: str = Field(max_length=1024)


class SubmissionResponse(BaseModel):
    outcome: str  # incorrect, advanced, completed, already_completed
    correct: bool
    completed: bool
    message: str
    current_clue_index: int
    clues_found: int
    rank: int | None = None
    reward: int | None = None


class HintRequest(BaseModel):
    level: int = Field(ge=1)


class HintResponse(BaseModel):
    level: int
    text: str
    hints_used: int
    hints_remaining: int
    newly_revealed: bool


class AttemptEntry(BaseModel):
    clue_id: int
    answer: str
    correct: bool
    attempted_at: datetime


class ReplayCounters(BaseModel):
    clues_found: int
    incorrect_attempts: int


class AttemptLogResponse(BaseModel):
    participation_id: int
    attempts: list[AttemptEntry]
    replayed: ReplayCounters
    stored: ReplayCounters
    consistent: bool


# --- Leaderboard / statistics ---


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    participation_id: int
    clues_found: int
    hints_used: int
    time_taken_seconds: float | None
    completed_at: datetime
    prize: int


class LeaderboardResponse(BaseModel):
    hunt_id: int
    entries: list[LeaderboardEntry]
    limit: int


class StatisticsResponse(BaseModel):
    hunt_id: int
    total_participants: int
    completed_participants: int
    average_completion_time: float | None
    fastest_completion_time: float | None
    completion_rate: float
    total_clues: int
