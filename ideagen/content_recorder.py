# ideagen/content_recorder.py

import asyncio
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ideagen.entities import GeneratedContent
from ideagen.errors import PersistenceError


def record_generated_content(
    session_factory: sessionmaker,
    *,
    user_id: str,
    idea_id: Optional[str],
    content_type: str,
    title: str,
    content_data: Any,
) -> str:
    """
    Insert a GeneratedContent row and return its id.
    """
    session: Session = session_factory()
    try:
        row = GeneratedContent(
            user_id=str(user_id),
            idea_id=idea_id,
            content_type=content_type,
            title=title[:255],
            content_data=content_data,
        )
        session.add(row)
        session.commit()
        return row.id
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f"Could not save {content_type}: {e}") from e
    finally:
        session.close()


def latest_generated_content(
    session_factory: sessionmaker,
    *,
    user_id: str,
    content_type: str,
    idea_id: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    session: Session = session_factory()
    try:
        query = (
            session.query(GeneratedContent)
                .filter(GeneratedContent.user_id == str(user_id))
                .filter(GeneratedContent.content_type == content_type)
        )
        if idea_id is not None:
            query = query.filter(GeneratedContent.idea_id == idea_id)
        row = query.order_by(GeneratedContent.created_at.desc()).first()
        if row is None:
            return None
        return {
            "id": row.id,
            "idea_id": row.idea_id,
            "content_type": row.content_type,
            "title": row.title,
            "content_data": row.content_data,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
    except SQLAlchemyError as e:
        raise PersistenceError(f"Could not load {content_type}: {e}") from e
    finally:
        session.close()


class ContentRecorder:
    def __init__(self, session_factory: sessionmaker):
        self.SessionFactory = session_factory

    async def insert(
        self,
        *,
        user_id: str,
        idea_id: Optional[str],
        content_type: str,
        title: str,
        content_data: Any,
    ) -> str:
        return await asyncio.to_thread(
            record_generated_content,
            self.SessionFactory,
            user_id=user_id,
            idea_id=idea_id,
            content_type=content_type,
            title=title,
            content_data=content_data,
        )

    async def latest(self, *, user_id: str, content_type: str, idea_id: Optional[str] = None):
        return await asyncio.to_thread(
            latest_generated_content,
            self.SessionFactory,
            user_id=user_id,
            content_type=content_type,
            idea_id=idea_id,
        )
