"""Request handlers: validate, touch the store, map rows back to output shapes.

Every handler takes the request's Session first. Named failure conditions are
raised as HandlerError subclasses; anything else the store raises propagates
unchanged after the open transaction is rolled back.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import desc, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.errors import AuthenticationError, ConflictError, NotFoundError
from backend.models import Like, User, Video
from backend.schemas import (
    CreateVideoInput,
    LikeResult,
    LikeVideoInput,
    LoginUserInput,
    RegisterUserInput,
    UnlikeVideoInput,
    UpdateUserInput,
    UpdateVideoInput,
    UserProfile,
    UserResponse,
    VideoFeedItem,
    VideoResponse,
)
from backend.security import hash_password, verify_password

logger = logging.getLogger(__name__)

DEFAULT_FEED_PAGE = 20
MAX_FEED_PAGE = 100

def _next_timestamp(previous: Optional[datetime]) -> datetime:
    """Current UTC time, nudged past `previous` so updated_at always moves forward."""
    now = datetime.utcnow()
    if previous is not None and now <= previous:
        now = previous + timedelta(microseconds=1)
    return now

def _require_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning("user %s not found", user_id)
        raise NotFoundError("User not found")
    return user

def _require_video(db: Session, video_id: int) -> Video:
    video = db.query(Video).filter(Video.id == video_id).first()
    if not video:
        logger.warning("video %s not found", video_id)
        raise NotFoundError("Video not found")
    return video

def _videos_for(db: Session, user_id: int) -> List[Video]:
    return (
        db.query(Video)
        .filter(Video.user_id == user_id)
        .order_by(desc(Video.created_at), desc(Video.id))
        .all()
    )

# ---- users ----

def register_user(db: Session, payload: RegisterUserInput) -> UserResponse:
    existing = db.query(User).filter(
        or_(User.username == payload.username, User.email == payload.email)
    ).all()
    if any(u.username == payload.username for u in existing):
        logger.warning("registration rejected: username %r taken", payload.username)
        raise ConflictError("Username already exists")
    if existing:
        logger.warning("registration rejected: email %r taken", payload.email)
        raise ConflictError("Email already exists")

    now = datetime.utcnow()
    user = User(
        username=payload.username,
        email=payload.email,
        password_hash=hash_password(payload.password),
        display_name=payload.display_name,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration for the same name/email
        db.rollback()
        logger.warning("registration rejected by unique constraint for %r", payload.username)
        raise ConflictError("Username or email already exists")
    db.refresh(user)
    logger.info("registered user %s (%s)", user.id, user.username)
    return UserResponse.model_validate(user)

def login_user(db: Session, payload: LoginUserInput) -> UserResponse:
    user = db.query(User).filter(User.email == payload.email).first()
    if not user or not verify_password(payload.password, user.password_hash):
        logger.warning("failed login for %r", payload.email)
        raise AuthenticationError("Invalid credentials")
    return UserResponse.model_validate(user)

def update_user(db: Session, payload: UpdateUserInput) -> UserResponse:
    """Apply the profile fields present in `payload`; absent ones are left alone."""
    user = _require_user(db, payload.id)

    changes = payload.model_dump(exclude_unset=True, exclude={"id"})
    for field, value in changes.items():
        setattr(user, field, value)
    user.updated_at = _next_timestamp(user.updated_at)
    db.commit()
    db.refresh(user)
    logger.info("updated user %s fields=%s", user.id, sorted(changes))
    return UserResponse.model_validate(user)

def get_user_profile(db: Session, user_id: int) -> Optional[UserProfile]:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return None
    videos = [VideoResponse.model_validate(v) for v in _videos_for(db, user_id)]
    return UserProfile(**UserResponse.model_validate(user).model_dump(), videos=videos)

# ---- videos ----

def create_video(db: Session, payload: CreateVideoInput) -> VideoResponse:
    _require_user(db, payload.user_id)

    now = datetime.utcnow()
    video = Video(
        user_id=payload.user_id,
        title=payload.title,
        description=payload.description,
        video_url=payload.video_url,
        thumbnail_url=payload.thumbnail_url,
        duration=payload.duration,
        view_count=0,
        like_count=0,
        created_at=now,
        updated_at=now,
    )
    db.add(video)
    db.commit()
    db.refresh(video)
    logger.info("user %s uploaded video %s", video.user_id, video.id)
    return VideoResponse.model_validate(video)

def update_video(db: Session, payload: UpdateVideoInput) -> VideoResponse:
    # TODO: restrict edits to the owning user once requests carry an authenticated identity
    video = _require_video(db, payload.id)

    changes = payload.model_dump(exclude_unset=True, exclude={"id"})
    for field, value in changes.items():
        setattr(video, field, value)
    video.updated_at = _next_timestamp(video.updated_at)
    db.commit()
    db.refresh(video)
    logger.info("updated video %s fields=%s", video.id, sorted(changes))
    return VideoResponse.model_validate(video)

def get_videos_by_user(db: Session, user_id: int) -> List[VideoResponse]:
    """Videos owned by `user_id`, newest first. Unknown users simply have none."""
    return [VideoResponse.model_validate(v) for v in _videos_for(db, user_id)]

def get_video_feed(
    db: Session,
    limit: int = DEFAULT_FEED_PAGE,
    offset: int = 0,
    viewer_id: Optional[int] = None,
) -> List[VideoFeedItem]:
    rows = (
        db.query(Video, User)
        .join(User, Video.user_id == User.id)
        .order_by(desc(Video.created_at), desc(Video.id))
        .offset(offset)
        .limit(limit)
        .all()
    )

    liked_ids = set()
    if viewer_id is not None and rows:
        liked = db.query(Like.video_id).filter(
            Like.user_id == viewer_id,
            Like.video_id.in_([video.id for video, _ in rows]),
        ).all()
        liked_ids = {video_id for (video_id,) in liked}

    return [
        VideoFeedItem(
            **VideoResponse.model_validate(video).model_dump(),
            username=owner.username,
            display_name=owner.display_name,
            avatar_url=owner.avatar_url,
            liked_by_viewer=video.id in liked_ids,
        )
        for video, owner in rows
    ]

def record_view(db: Session, video_id: int) -> VideoResponse:
    counted = db.query(Video).filter(Video.id == video_id).update(
        {Video.view_count: Video.view_count + 1}, synchronize_session=False
    )
    if not counted:
        db.rollback()
        logger.warning("video %s not found", video_id)
        raise NotFoundError("Video not found")
    db.commit()
    return VideoResponse.model_validate(_require_video(db, video_id))

# ---- likes ----

def _has_liked(db: Session, user_id: int, video_id: int) -> bool:
    return db.query(Like.id).filter(
        Like.user_id == user_id, Like.video_id == video_id
    ).first() is not None

def like_video(db: Session, payload: LikeVideoInput) -> bool:
    """Like a video. Returns False when the user already likes it."""
    _require_user(db, payload.user_id)
    video = _require_video(db, payload.video_id)

    if _has_liked(db, payload.user_id, payload.video_id):
        return False

    now = _next_timestamp(video.updated_at)
    try:
        db.add(Like(user_id=payload.user_id, video_id=payload.video_id, created_at=now))
        db.flush()
        db.query(Video).filter(Video.id == payload.video_id).update(
            {Video.like_count: Video.like_count + 1, Video.updated_at: now},
            synchronize_session=False,
        )
        db.commit()
    except IntegrityError:
        # A concurrent request liked the same pair first
        db.rollback()
        return False
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info("user %s liked video %s", payload.user_id, payload.video_id)
    return True

def unlike_video(db: Session, payload: UnlikeVideoInput) -> bool:
    """Remove a like and decrement the counter together.

    Returns False, changing nothing, when the user had not liked the video.
    """
    _require_user(db, payload.user_id)
    video = _require_video(db, payload.video_id)

    now = _next_timestamp(video.updated_at)
    try:
        removed = db.query(Like).filter(
            Like.user_id == payload.user_id, Like.video_id == payload.video_id
        ).delete(synchronize_session=False)
        if not removed:
            db.rollback()
            return False
        db.query(Video).filter(Video.id == payload.video_id, Video.like_count > 0).update(
            {Video.like_count: Video.like_count - 1, Video.updated_at: now},
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info("user %s unliked video %s", payload.user_id, payload.video_id)
    return True

def like_state(db: Session, payload: LikeVideoInput, changed: bool) -> LikeResult:
    """Authoritative like state for a pair, reported back after like/unlike."""
    video = _require_video(db, payload.video_id)
    return LikeResult(
        video_id=video.id,
        user_id=payload.user_id,
        changed=changed,
        liked=_has_liked(db, payload.user_id, payload.video_id),
        like_count=video.like_count,
    )
