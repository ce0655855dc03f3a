from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field, field_validator
from typing import Any, Optional
from contextlib import asynccontextmanager
import uvicorn
import logging

import config
config.setup_logging()

from errors import QuizRoomError
from quiz_engine import QuizEngine, _sanitize_text
from registry import RoomRegistry
from socket_manager import ConnectionGateway, RoomChannels

logger = logging.getLogger(__name__)


def _allowed_origins() -> list[str]:
    if config.ALLOWED_ORIGINS.strip():
        return [o.strip() for o in config.ALLOWED_ORIGINS.split(",") if o.strip()]
    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting quiz room backend")
    channels = RoomChannels()
    registry = RoomRegistry(channels.publish)
    app.state.registry = registry
    gateway = ConnectionGateway(registry, channels, allowed_origins=_allowed_origins())
    registry.on_evict = gateway.release_room
    app.state.gateway = gateway
    app.state.quiz_engine = QuizEngine()
    registry.start_cleanup_loop(config.ROOM_TTL_SECONDS)
    yield
    logger.info("Shutting down quiz room backend")
    await registry.close()


app = FastAPI(title="Quiz Room Backend", lifespan=lifespan)


@app.exception_handler(QuizRoomError)
async def quiz_room_error_handler(request: Request, exc: QuizRoomError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def get_registry(request: Request) -> RoomRegistry:
    return request.app.state.registry


def get_quiz_engine(request: Request) -> QuizEngine:
    return request.app.state.quiz_engine


class RoomCreateRequest(BaseModel):
    subject: str = ""
    title: Optional[str] = None
    questions: Any = None  # shape is checked by the registry
    session_id: str = Field("", validation_alias=AliasChoices("creatorSessionId", "sessionId"))

    @field_validator('subject')
    @classmethod
    def validate_subject(cls, v: str) -> str:
        return _sanitize_text(v)[:config.MAX_TITLE_LENGTH]

    @field_validator('title')
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return _sanitize_text(v)[:config.MAX_TITLE_LENGTH] or None


@app.post("/quiz/generate/{subject}")
async def generate_quiz(subject: str, engine: QuizEngine = Depends(get_quiz_engine)):
    questions = await engine.generate_questions(subject)
    return {"quiz": [q.to_wire() for q in questions]}


@app.post("/quiz/create")
async def create_room(request: RoomCreateRequest, registry: RoomRegistry = Depends(get_registry)):
    title = request.title or f"Quiz: {request.subject}"
    room = registry.create_room(request.subject, title, request.questions,
                                creator_session_id=request.session_id)
    return {"roomId": room.room_code, "url": f"/quiz/{room.room_code}"}


@app.get("/quiz/{room_id}")
async def get_room(room_id: str, registry: RoomRegistry = Depends(get_registry)):
    room = registry.get_room(room_id)
    return {**room.summary(), "questions": room.public_questions()}


@app.get("/sessions/{session_id}/rooms")
async def list_rooms(session_id: str, registry: RoomRegistry = Depends(get_registry)):
    return {"rooms": registry.list_rooms_by_creator(session_id)}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.app.state.gateway.connect(websocket)


# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins() or ["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


@app.get("/")
async def root():
    return {"message": "Quiz room backend is running"}


@app.get("/health")
async def health(registry: RoomRegistry = Depends(get_registry)):
    return {"status": "healthy", "rooms": len(registry)}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
