from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

QuestionType = Literal["single_choice", "multi_select", "boolean", "ordered_sequence", "free_text"]
Difficulty = Literal["easy", "medium", "hard"]


class SingleChoiceKey(BaseModel):
    type: Literal["single_choice"] = "single_choice"
    option_id: str


class MultiSelectKey(BaseModel):
    type: Literal["multi_select"] = "multi_select"
    option_ids: List[str] = Field(min_length=1)


class BooleanKey(BaseModel):
    type: Literal["boolean"] = "boolean"
    value: bool


class OrderedSequenceKey(BaseModel):
    type: Literal["ordered_sequence"] = "ordered_sequence"
    item_ids: List[str] = Field(min_length=1)


class FreeTextKey(BaseModel):
    type: Literal["free_text"] = "free_text"
    text: str = Field(min_length=1)


AnswerKey = Annotated[
    Union[SingleChoiceKey, MultiSelectKey, BooleanKey, OrderedSequenceKey, FreeTextKey],
    Field(discriminator="type"),
]
answer_key_adapter = TypeAdapter(AnswerKey)


class OptionPayload(BaseModel):
    id: str
    text: str


class QuestionCreate(BaseModel):
    prompt: str = Field(min_length=1)
    points: int = Field(default=1, ge=0)
    answer_key: AnswerKey
    options: List[OptionPayload] = Field(default_factory=list)
    explanation: str = ""
    order_index: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def key_matches_options(self):
        option_ids = {o.id for o in self.options}
        key = self.answer_key
        if isinstance(key, SingleChoiceKey):
            referenced = {key.option_id}
        elif isinstance(key, MultiSelectKey):
            referenced = set(key.option_ids)
        elif isinstance(key, OrderedSequenceKey):
            referenced = set(key.item_ids)
        else:
            return self
        if not self.options:
            raise ValueError(f"{key.type} questions require options")
        missing = referenced - option_ids
        if missing:
            raise ValueError(f"Answer key references unknown options: {sorted(missing)}")
        return self


class QuestionUpdate(BaseModel):
    prompt: Optional[str] = Field(default=None, min_length=1)
    points: Optional[int] = Field(default=None, ge=0)
    explanation: Optional[str] = None


class QuestionOut(BaseModel):
    id: int
    quiz_id: int
    order_index: int
    type: QuestionType
    prompt: str
    points: int
    answer_key: AnswerKey
    options: List[OptionPayload]
    explanation: str


class QuizCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = ""
    difficulty: Difficulty = "medium"
    passing_score: Optional[float] = Field(default=None, ge=0, le=100)
    allow_retries: bool = True
    max_attempts: Optional[int] = Field(default=None, ge=1)
    visibility: Literal["visible", "hidden"] = "visible"


class QuizOut(BaseModel):
    id: int
    title: str
    description: str
    status: str
    visibility: str
    difficulty: Difficulty
    passing_score: Optional[float]
    allow_retries: bool
    max_attempts: Optional[int]
    question_count: int
    total_points: int


class AnswerIn(BaseModel):
    question_id: int
    answer: Any = None
    time_spent: Optional[int] = Field(default=None, ge=0)


class SaveProgressRequest(BaseModel):
    answers: List[AnswerIn]


class SubmitAttemptRequest(BaseModel):
    answers: List[AnswerIn]
    time_spent: Optional[int] = Field(default=None, ge=0)


class ScoredAnswer(BaseModel):
    question_id: int
    answer: Any = None
    is_correct: bool
    points_earned: int
    time_spent: Optional[int] = None


class AttemptOut(BaseModel):
    id: int
    user_id: int
    quiz_id: int
    status: str
    max_score: int
    score: int
    percentage: float
    is_passed: bool
    time_spent: Optional[int]
    xp_awarded: Optional[int]
    answers: List[Dict[str, Any]]
    started_at: datetime
    completed_at: Optional[datetime]


class AttemptSummaryOut(BaseModel):
    id: int
    status: str
    percentage: float
    completed_at: Optional[datetime]


class SubmitAttemptResponse(BaseModel):
    attempt_id: int
    score: int
    max_score: int
    percentage: float
    is_passed: bool
    xp_awarded: int
    answers: List[ScoredAnswer]


class AssignmentCreate(BaseModel):
    user_id: int
    quiz_id: int
    due_date: Optional[datetime] = None


class AssignmentOut(BaseModel):
    id: int
    user_id: int
    quiz_id: int
    status: str
    due_date: Optional[datetime]
    score: Optional[float]
    attempt_id: Optional[int]
    completed_at: Optional[datetime]


class DifficultyStatOut(BaseModel):
    count: int
    average_percentage: float


class RecentAttemptOut(BaseModel):
    quiz_id: int
    percentage: float
    difficulty: str
    completed_at: Optional[datetime]


class UserStatsResponse(BaseModel):
    total_xp: int
    quizzes_completed: int
    rank: int
    average_percentage: float
    total_time_spent: int
    difficulty_stats: Dict[str, DifficultyStatOut]
    recent_attempts: List[RecentAttemptOut]


class LeaderboardEntryOut(BaseModel):
    rank: int
    user_id: int
    display_name: str
    total_xp: int
    quizzes_completed: int


class LeaderboardResponse(BaseModel):
    current_user_id: int
    leaderboard: List[LeaderboardEntryOut]


class AnswerDistributionOut(BaseModel):
    label: str
    count: int
    percentage: float


class UserResponseOut(BaseModel):
    user_id: int
    display_name: str
    answer: str
    is_correct: bool
    points_earned: int
    completed_at: Optional[datetime]


class QuestionAnalyticsOut(BaseModel):
    question_id: int
    prompt: str
    type: QuestionType
    order_index: int
    points: int
    total_responses: int
    correct_count: int
    incorrect_count: int
    skipped_count: int
    accuracy: float
    answer_distribution: List[AnswerDistributionOut]
    user_responses: List[UserResponseOut]


class ScoreBucketOut(BaseModel):
    range: str
    count: int


class DailyResponsesOut(BaseModel):
    date: str
    count: int


class ReportSummaryOut(BaseModel):
    total_attempts: int
    passed_attempts: int
    failed_attempts: int
    average_percentage: float
    pass_rate: float


class QuizReport(BaseModel):
    quiz_id: int
    title: str
    question_count: int
    total_points: int
    summary: ReportSummaryOut
    score_distribution: List[ScoreBucketOut]
    responses_over_time: List[DailyResponsesOut]
    question_analytics: List[QuestionAnalyticsOut]


class AbandonAttemptsResponse(BaseModel):
    abandoned: int


class OverdueAssignmentsResponse(BaseModel):
    updated: int
