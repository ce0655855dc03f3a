"""Wire models for the quiz room protocol.

Every WebSocket frame is a JSON object tagged by ``type``. Inbound frames are
decoded into one of a closed set of models before any room state is touched;
outbound events are built from models and serialized with their camelCase
aliases.
"""
import re
from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

import config


def normalize_room_code(code: str) -> str:
    return code.strip().upper()


def sanitize_username(value: str) -> str:
    """Strip HTML tags and control characters from a client-supplied name."""
    value = re.sub(r'<[^>]+>', '', value)
    value = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', value)
    return value.strip()


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Question set
# ---------------------------------------------------------------------------

class Question(WireModel):
    """One multiple-choice question. Grading is exact string equality."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    prompt: str = Field(alias="question")
    options: List[str]
    correct_answer: str = Field(alias="correctAnswer")

    @model_validator(mode="after")
    def check_options(self) -> "Question":
        if not self.prompt.strip():
            raise ValueError("Question text must not be empty")
        if len(self.options) < 2:
            raise ValueError("Question must have at least 2 options")
        if len(set(self.options)) != len(self.options):
            raise ValueError("Question options must be distinct")
        if self.correct_answer not in self.options:
            raise ValueError("correctAnswer must match one of the options exactly")
        return self


# ---------------------------------------------------------------------------
# Inbound (client -> server)
# ---------------------------------------------------------------------------

class RoomMessage(WireModel):
    room_id: str = Field(alias="roomId")

    @field_validator("room_id")
    @classmethod
    def validate_room_id(cls, v: str) -> str:
        v = normalize_room_code(v)
        if not v:
            raise ValueError("roomId must not be empty")
        return v


class JoinRoom(RoomMessage):
    type: Literal["join_room"] = "join_room"
    username: str

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        v = sanitize_username(v)
        if not v or len(v) > config.MAX_USERNAME_LENGTH:
            raise ValueError(f"Username must be 1-{config.MAX_USERNAME_LENGTH} characters")
        return v


class StartQuiz(RoomMessage):
    type: Literal["start_quiz"] = "start_quiz"


class SubmitAnswer(RoomMessage):
    type: Literal["submit_answer"] = "submit_answer"
    question_index: int = Field(alias="questionIndex")
    answer: str


InboundMessage = Annotated[
    Union[JoinRoom, StartQuiz, SubmitAnswer],
    Field(discriminator="type"),
]

inbound_adapter: TypeAdapter = TypeAdapter(InboundMessage)


# ---------------------------------------------------------------------------
# Outbound (server -> client)
# ---------------------------------------------------------------------------

class PlayerSnapshot(WireModel):
    id: str
    username: str
    score: int


class Connected(WireModel):
    type: Literal["connected"] = "connected"
    connection_id: str = Field(alias="connectionId")


class PlayerJoined(WireModel):
    type: Literal["player_joined"] = "player_joined"
    players: List[PlayerSnapshot]


class QuizStarted(WireModel):
    type: Literal["quiz_started"] = "quiz_started"


class NewQuestion(WireModel):
    type: Literal["new_question"] = "new_question"
    question: str
    options: List[str]
    index: int
    total: int
    time_left: int = Field(alias="timeLeft")  # whole seconds


class QuizEnded(WireModel):
    type: Literal["quiz_ended"] = "quiz_ended"
    leaderboard: List[PlayerSnapshot]


class ErrorEvent(WireModel):
    type: Literal["error"] = "error"
    message: str


OutboundEvent = Union[Connected, PlayerJoined, QuizStarted, NewQuestion, QuizEnded, ErrorEvent]
