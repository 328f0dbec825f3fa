"""Turns stored messages into the payloads clients receive.

Sender ids are replaced by a public user projection (or an "unknown"
placeholder when the user no longer exists), and file ids by a file
projection. The ``system`` and ``ai`` sender literals are kept as-is.
"""
import logging
from typing import Dict, List

from roomchat.store import (
    AI_SENDER,
    SYSTEM_SENDER,
    UNKNOWN_SENDER,
    FileStore,
    Message,
    UserStore,
)

logger = logging.getLogger(__name__)


class MessageEnricher:
    def __init__(self, users: UserStore, files: FileStore) -> None:
        self.users = users
        self.files = files

    async def enrich(self, message: Message) -> dict:
        return (await self.enrich_many([message]))[0]

    async def enrich_many(self, messages: List[Message]) -> List[dict]:
        """Enrich a batch, looking each distinct sender up only once."""
        sender_ids = sorted({
            m.sender for m in messages
            if m.sender not in (SYSTEM_SENDER, AI_SENDER)
        })
        senders: Dict[str, dict] = {
            user.id: user.projection()
            for user in await self.users.get_users_by_ids(sender_ids)
        }

        payloads = []
        for message in messages:
            if message.sender in (SYSTEM_SENDER, AI_SENDER):
                sender = message.sender
            else:
                sender = senders.get(message.sender, dict(UNKNOWN_SENDER))

            file_payload = None
            if message.file:
                record = await self.files.get(message.file)
                if record is not None:
                    file_payload = record.projection()
                else:
                    logger.debug("File %s of message %s is gone", message.file, message.id)

            payloads.append({
                "_id": message.id,
                "room": message.room,
                "type": message.type.value,
                "content": message.content,
                "sender": sender,
                "file": file_payload,
                "aiType": message.aiType,
                "timestamp": message.timestamp,
                "mentions": message.mentions,
                "readers": message.readers,
                "reactions": message.reactions,
                "metadata": message.metadata,
            })
        return payloads
