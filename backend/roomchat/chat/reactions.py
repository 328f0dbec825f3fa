"""Message reactions.

Adding and removing a reaction are idempotent set operations. After each
change the full reaction map is re-read and broadcast to the message's room.
"""
import logging
from typing import Dict, List, Optional

from roomchat.store import MessageStore

from .errors import AuthorizationError, NotFoundError, ValidationError
from .manager import ConnectionManager
from .schemas import MESSAGE_REACTION_UPDATE

logger = logging.getLogger(__name__)


class ReactionAggregator:
    def __init__(self, messages: MessageStore, manager: ConnectionManager) -> None:
        self.messages = messages
        self.manager = manager

    async def apply(
        self,
        user_id: str,
        message_id: str,
        reaction: str,
        action: str,
        current_room: Optional[str],
    ) -> Dict[str, List[str]]:
        """Add or remove ``user_id``'s reaction and broadcast the new map.

        Args:
            user_id: Reacting user.
            message_id: Target message.
            reaction: Reaction key (usually an emoji).
            action: ``add`` or ``remove``.
            current_room: Room the user is currently in.

        Returns:
            The reaction map after the change.
        """
        message = await self.messages.get(message_id)
        if message is None or message.isDeleted:
            raise NotFoundError("Message not found")
        if message.room != current_room:
            raise AuthorizationError("You are not a member of this room")

        if action == "add":
            changed = await self.messages.add_reaction(message_id, reaction, user_id)
        elif action == "remove":
            changed = await self.messages.remove_reaction(message_id, reaction, user_id)
        else:
            raise ValidationError(f"Unknown reaction action: {action}")

        if not changed:
            logger.debug(f"Reaction {action} {reaction} by {user_id} on {message_id} was a no-op")

        reactions = await self.messages.get_reactions(message_id)
        await self.manager.broadcast(message.room, MESSAGE_REACTION_UPDATE, {
            "messageId": message_id,
            "reactions": reactions,
        })
        return reactions
