from fastapi import FastAPI, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import List, Optional
from sqlalchemy.orm import Session
from backend import handlers
from backend.errors import HandlerError
from backend.models import Base
from backend.schemas import (
    CreateVideoInput,
    LikeRequest,
    LikeResult,
    LikeVideoInput,
    LoginUserInput,
    RegisterUserInput,
    UnlikeVideoInput,
    UpdateUserInput,
    UpdateVideoInput,
    UserProfile,
    UserResponse,
    UserUpdate,
    VideoFeedItem,
    VideoResponse,
    VideoUpdate,
)

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from dotenv import load_dotenv
import logging
import os

load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./database.db")
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base.metadata.create_all(bind=engine)


app = FastAPI(title="Short Video Share API", version="1.0.0")

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(HandlerError)
def handle_handler_error(request: Request, exc: HandlerError):
    # Same body shape as HTTPException so clients parse one format
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

@app.get("/")
def read_root():
    return {"message": "Short video share backend is running"}

# ---- users ----

@app.post("/api/users", response_model=UserResponse)
def register_user(payload: RegisterUserInput, db: Session = Depends(get_db)):
    return handlers.register_user(db, payload)

@app.post("/api/auth/login", response_model=UserResponse)
def login_user(payload: LoginUserInput, db: Session = Depends(get_db)):
    # No session or token is issued; the client keeps the returned user.
    return handlers.login_user(db, payload)

@app.patch("/api/users/{user_id}", response_model=UserResponse)
def update_user(user_id: int, payload: UserUpdate, db: Session = Depends(get_db)):
    # Forward only what the client sent so omitted fields stay untouched
    update = UpdateUserInput(id=user_id, **payload.model_dump(exclude_unset=True))
    return handlers.update_user(db, update)

@app.get("/api/users/{user_id}/profile", response_model=Optional[UserProfile])
def get_user_profile(user_id: int, db: Session = Depends(get_db)):
    return handlers.get_user_profile(db, user_id)

@app.get("/api/users/{user_id}/videos", response_model=List[VideoResponse])
def get_videos_by_user(user_id: int, db: Session = Depends(get_db)):
    return handlers.get_videos_by_user(db, user_id)

# ---- videos ----

@app.post("/api/videos", response_model=VideoResponse)
def create_video(payload: CreateVideoInput, db: Session = Depends(get_db)):
    return handlers.create_video(db, payload)

@app.get("/api/videos/feed", response_model=List[VideoFeedItem])
def get_video_feed(
    limit: int = Query(handlers.DEFAULT_FEED_PAGE, ge=1, le=handlers.MAX_FEED_PAGE),
    offset: int = Query(0, ge=0),
    viewer_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    return handlers.get_video_feed(db, limit=limit, offset=offset, viewer_id=viewer_id)

@app.patch("/api/videos/{video_id}", response_model=VideoResponse)
def update_video(video_id: int, payload: VideoUpdate, db: Session = Depends(get_db)):
    update = UpdateVideoInput(id=video_id, **payload.model_dump(exclude_unset=True))
    return handlers.update_video(db, update)

@app.post("/api/videos/{video_id}/view", response_model=VideoResponse)
def record_view(video_id: int, db: Session = Depends(get_db)):
    return handlers.record_view(db, video_id)

# ---- likes ----

@app.post("/api/videos/{video_id}/like", response_model=LikeResult)
def like_video(video_id: int, payload: LikeRequest, db: Session = Depends(get_db)):
    like = LikeVideoInput(user_id=payload.user_id, video_id=video_id)
    changed = handlers.like_video(db, like)
    return handlers.like_state(db, like, changed)

@app.post("/api/videos/{video_id}/unlike", response_model=LikeResult)
def unlike_video(video_id: int, payload: LikeRequest, db: Session = Depends(get_db)):
    unlike = UnlikeVideoInput(user_id=payload.user_id, video_id=video_id)
    changed = handlers.unlike_video(db, unlike)
    return handlers.like_state(db, unlike, changed)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
