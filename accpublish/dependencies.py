import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from accpublish.core.database import get_db
from accpublish.core.datetime_utils import is_expired
from accpublish.core.logging import get_logger
from accpublish.core.scheduler import PublishScheduler, get_scheduler
from accpublish.models.publish_job import PublishJob
from accpublish.models.user import Session, User

logger = get_logger(__name__)

SESSION_COOKIE = "session_id"

DBSession = Annotated[AsyncSession, Depends(get_db)]


def request_session_id(request: Request) -> str | None:
    """Session id from the ``session_id`` cookie, or an ``Authorization: Bearer`` header."""
    cookie = request.cookies.get(SESSION_COOKIE)
    if cookie:
        return cookie
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


async def get_current_user(request: Request, db: DBSession) -> User:
    """Signed-in user of the request, 401 otherwise.

    Expired sessions are deleted on sight.
    """
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
    )
    raw = request_session_id(request)
    if not raw:
        raise unauthorized
    try:
        session_uuid = uuid.UUID(raw)
    except ValueError:
        raise unauthorized from None

    session = (
        await db.execute(
            select(Session).where(Session.id == session_uuid).options(joinedload(Session.user))
        )
    ).scalar_one_or_none()
    if session is None:
        raise unauthorized

    if is_expired(session.expires_at):
        logger.bind(session_id=str(session.id), user_id=str(session.user_id)).info(
            "session_expired"
        )
        await db.delete(session)
        await db.commit()
        raise unauthorized

    return session.user


CurrentUser = Annotated[User, Depends(get_current_user)]


def get_publish_scheduler() -> PublishScheduler:
    """Scheduler shared by the routes (store and runner hang off it)."""
    return get_scheduler()


Scheduler = Annotated[PublishScheduler, Depends(get_publish_scheduler)]


async def get_owned_job(job_id: uuid.UUID, user: CurrentUser, scheduler: Scheduler) -> PublishJob:
    """Load a publish job of the current user, 404 otherwise."""
    job = await scheduler.store.get_job(job_id)
    if job is None or job.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


OwnedJob = Annotated[PublishJob, Depends(get_owned_job)]
