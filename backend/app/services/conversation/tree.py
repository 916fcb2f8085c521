"""Resolve the active branch of a conversation's message tree."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence
import logging

from app.schemas.claude import Conversation, Message

logger = logging.getLogger("uvicorn.error")


def resolve_message_chain(
    messages: Sequence[Message],
    leaf_uuid: Optional[str],
) -> List[Message]:
    """
    Walk parent pointers from `leaf_uuid` back to the root and return the
    chain in chronological order.

    Unknown or missing leaf: every message in its original order. The walk
    is bounded by the number of messages; a parent cycle falls back the same way.
    """
    by_uuid: Dict[str, Message] = {}
    for msg in messages:
        if msg.uuid:
            by_uuid[msg.uuid] = msg

    if not leaf_uuid or leaf_uuid not in by_uuid:
        return list(messages)

    chain: List[Message] = []
    limit = len(messages)
    uuid: Optional[str] = leaf_uuid
    while uuid and uuid in by_uuid:
        if len(chain) >= limit:
            logger.warning(
                "message-chain-cycle leaf=%s messages=%s fallback=original-order",
                leaf_uuid,
                limit,
            )
            return list(messages)
        msg = by_uuid[uuid]
        chain.append(msg)
        uuid = msg.parent_message_uuid

    chain.reverse()
    return chain


def get_message_chain(conversation: Conversation) -> List[Message]:
    return resolve_message_chain(
        conversation.chat_messages,
        conversation.current_leaf_message_uuid,
    )
