from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, selectinload

from rag_chat.logger import GLOBAL_LOGGER as log
from rag_chat.utils.config_loader import get_config

from .models import Conversation, Message

DEFAULT_TITLE = "New Chat"


def default_settings() -> dict[str, Any]:
    rag_cfg = get_config()["rag"]
    return {"topK": rag_cfg["top_k"], "threshold": rag_cfg["threshold"]}


class ChatRepository:
    """
    Repository providing CRUD operations for Conversation + Message models.
    Every conversation lookup is scoped to the owning user.
    """

    async def create_conversation(
        self,
        db: AsyncSession,
        user_id: str,
        title: Optional[str] = None,
        settings: Optional[dict[str, Any]] = None,
    ) -> Conversation:
        conv = Conversation(
            user_id=user_id,
            title=title or DEFAULT_TITLE,
            settings=settings or default_settings(),
        )
        db.add(conv)
        await db.commit()
        await db.refresh(conv)
        log.info("New conversation created | conversation_id=%s", conv.id)
        return conv

    async def get_conversations(
        self, db: AsyncSession, user_id: str
    ) -> list[tuple[Conversation, Optional[Message]]]:
        """
        All conversations of a user, most recently active first,
        each paired with its latest message (or None).
        """
        out = await db.execute(
            select(Conversation)
            .where(Conversation.user_id == user_id)
            .order_by(Conversation.updated_at.desc())
        )
        conversations = out.scalars().all()
        if not conversations:
            return []

        # latest message per conversation in a single query
        ranked = (
            select(
                Message,
                func.row_number()
                .over(
                    partition_by=Message.conversation_id,
                    order_by=Message.created_at.desc(),
                )
                .label("rn"),
            )
            .where(Message.conversation_id.in_([c.id for c in conversations]))
            .subquery()
        )
        latest = aliased(Message, ranked)
        rows = await db.execute(select(latest).where(ranked.c.rn == 1))
        last_by_conv = {m.conversation_id: m for m in rows.scalars().all()}

        log.info("Listing conversations | user_id=%s | count=%d", user_id, len(conversations))
        return [(c, last_by_conv.get(c.id)) for c in conversations]

    async def get_conversation(
        self, db: AsyncSession, conversation_id: str, user_id: str
    ) -> Optional[Conversation]:
        """
        Conversation with its messages in chronological order, or None if the
        user does not own it.
        """
        out = await db.execute(
            select(Conversation)
            .options(selectinload(Conversation.messages))
            .where(Conversation.id == conversation_id, Conversation.user_id == user_id)
        )
        conv = out.scalar_one_or_none()
        log.info(
            "Conversation lookup | conversation_id=%s | found=%s",
            conversation_id,
            conv is not None,
        )
        return conv

    async def update_conversation_settings(
        self,
        db: AsyncSession,
        conversation_id: str,
        user_id: str,
        settings: dict[str, Any],
    ) -> int:
        res = await db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id, Conversation.user_id == user_id)
            .values(settings=settings, updated_at=func.now())
        )
        await db.commit()
        log.info(
            "Conversation settings updated | conversation_id=%s | rows=%d",
            conversation_id,
            res.rowcount,
        )
        return res.rowcount

    async def add_message(
        self,
        db: AsyncSession,
        conversation_id: str,
        role: str,
        content: str,
        sources: Optional[list[dict[str, Any]]] = None,
    ) -> Message:
        msg = Message(
            conversation_id=conversation_id,
            role=role,
            content=content,
            sources=sources,
        )
        db.add(msg)
        # touch the conversation so it sorts to the top of the list
        await db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(updated_at=func.now())
        )
        await db.commit()
        await db.refresh(msg)

        log.info(
            "Message persisted | conversation_id=%s | role=%s | chars=%d",
            conversation_id,
            role,
            len(content),
        )
        return msg

    async def delete_conversation(
        self, db: AsyncSession, conversation_id: str, user_id: str
    ) -> int:
        # messages go with it through ON DELETE CASCADE
        res = await db.execute(
            delete(Conversation).where(
                Conversation.id == conversation_id, Conversation.user_id == user_id
            )
        )
        await db.commit()
        log.info(
            "Conversation deleted | conversation_id=%s | rows=%d",
            conversation_id,
            res.rowcount,
        )
        return res.rowcount
