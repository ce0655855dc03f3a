from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence
import asyncio
import logging
import math
import time

import config
from protocol import (
    NewQuestion,
    OutboundEvent,
    PlayerJoined,
    PlayerSnapshot,
    Question,
    QuizEnded,
    QuizStarted,
)
from scheduler import QuestionTimer

logger = logging.getLogger(__name__)

Publisher = Callable[[OutboundEvent], Awaitable[None]]


class RoomState(str, Enum):
    LOBBY = "LOBBY"
    PLAYING = "PLAYING"
    ENDED = "ENDED"


@dataclass
class Player:
    connection_id: str
    username: str
    score: int = 0
    answered_question_index: int = -1  # highest index with a scored answer

    def snapshot(self) -> PlayerSnapshot:
        return PlayerSnapshot(id=self.connection_id, username=self.username, score=self.score)


class Room:
    """One quiz session: roster, question pointer and the single countdown.

    Every operation that reads or mutates the room runs under ``self.lock``,
    including timer expiry, and broadcasts are published while the lock is
    held so subscribers see events in the order the transitions happened.
    Rooms never share a lock.
    """

    def __init__(self, room_code: str, subject: str, title: str,
                 questions: Sequence[Question], publish: Publisher,
                 creator_session_id: str = "",
                 time_limit: float = config.QUESTION_TIME_LIMIT):
        self.room_code = room_code
        self.subject = subject
        self.title = title
        self.questions = tuple(questions)
        self.creator_session_id = creator_session_id
        self.time_limit = time_limit
        self.state = RoomState.LOBBY
        self.current_question_index = -1
        self.players: Dict[str, Player] = {}  # connection_id -> Player, join order
        self.leaderboard: Optional[List[PlayerSnapshot]] = None
        self.timer = QuestionTimer(room_code)
        self.lock = asyncio.Lock()
        self.created_at = time.time()
        self.last_activity = self.created_at
        self._publish = publish

    def touch(self):
        """Update last activity timestamp."""
        self.last_activity = time.time()

    def is_expired(self, ttl: float) -> bool:
        """Only finished rooms age out; a room in play is never evicted."""
        return self.state == RoomState.ENDED and time.time() - self.last_activity > ttl

    def roster(self) -> List[PlayerSnapshot]:
        return [p.snapshot() for p in self.players.values()]

    def get_leaderboard(self) -> List[PlayerSnapshot]:
        # sorted() is stable, so equal scores keep join order
        ranked = sorted(self.players.values(), key=lambda p: p.score, reverse=True)
        return [p.snapshot() for p in ranked]

    async def join(self, connection_id: str, username: str) -> Optional[Player]:
        """Add a player, or re-confirm an existing one, and broadcast the roster.

        A finished room accepts the join as a subscription only: the roster is
        re-broadcast but no player is added.
        """
        async with self.lock:
            self.touch()
            player = self.players.get(connection_id)
            if player is None and self.state != RoomState.ENDED:
                player = Player(connection_id=connection_id, username=username)
                self.players[connection_id] = player
                logger.info("Player '%s' joined room %s (%d players)",
                            username, self.room_code, len(self.players))
            await self._publish(PlayerJoined(players=self.roster()))
            return player

    async def start(self) -> bool:
        async with self.lock:
            if self.state != RoomState.LOBBY:
                logger.debug("Ignoring start for room %s in state %s", self.room_code, self.state.value)
                return False
            self.touch()
            self.state = RoomState.PLAYING
            logger.info("Quiz started in room %s with %d players and %d questions",
                        self.room_code, len(self.players), len(self.questions))
            await self._publish(QuizStarted())
            await self._advance()
            return True

    async def submit_answer(self, connection_id: str, question_index: int, answer: str) -> bool:
        """Score an answer. Returns False when the submission is stale and dropped."""
        async with self.lock:
            player = self.players.get(connection_id)
            if (self.state != RoomState.PLAYING
                    or player is None
                    or question_index != self.current_question_index
                    or player.answered_question_index >= question_index):
                logger.debug("Dropped stale answer from %s for question %d in room %s",
                             connection_id, question_index, self.room_code)
                return False
            self.touch()
            player.answered_question_index = question_index
            if answer == self.questions[question_index].correct_answer:
                player.score += 1
            return True

    async def advance(self, expected_index: Optional[int] = None):
        """Move to the next question, or end the quiz after the last one.

        ``expected_index`` is the question a countdown was armed for; an
        expiry that no longer matches the current question is ignored.
        """
        async with self.lock:
            if self.state != RoomState.PLAYING:
                return
            if expected_index is not None and expected_index != self.current_question_index:
                logger.debug("Ignoring expired timer for question %d in room %s (current %d)",
                             expected_index, self.room_code, self.current_question_index)
                return
            await self._advance()

    async def _advance(self):
        next_index = self.current_question_index + 1
        if next_index < len(self.questions):
            self.current_question_index = next_index
            question = self.questions[next_index]
            await self._publish(NewQuestion(
                question=question.prompt,
                options=list(question.options),
                index=next_index,
                total=len(self.questions),
                time_left=math.ceil(self.time_limit),
            ))
            self.timer.restart(next_index, self.time_limit, self.advance)
            logger.info("Room %s: question %d/%d", self.room_code, next_index + 1, len(self.questions))
            return

        self.timer.cancel()
        self.state = RoomState.ENDED
        self.leaderboard = self.get_leaderboard()
        logger.info("Quiz ended in room %s", self.room_code)
        await self._publish(QuizEnded(leaderboard=self.leaderboard))

    def close(self) -> Optional[asyncio.Task]:
        """Stop the countdown when the room is dropped from the registry."""
        return self.timer.cancel()

    def summary(self) -> dict:
        return {
            "roomId": self.room_code,
            "subject": self.subject,
            "title": self.title,
            "state": self.state.value,
            "currentQuestionIndex": self.current_question_index,
            "total": len(self.questions),
            "players": [p.to_wire() for p in self.roster()],
            "leaderboard": ([p.to_wire() for p in self.leaderboard]
                            if self.leaderboard is not None else None),
            "createdAt": self.created_at,
        }

    def public_questions(self) -> List[dict]:
        """Question prompts and options without the correct answers."""
        return [{"question": q.prompt, "options": list(q.options)} for q in self.questions]
