"""
Outbound messaging.

Replies are built as plain data (Reply with quick replies, buttons and
cards) and handed to a Messenger for the concrete chat channel. Delivery is
fire-and-forget: deliver_reply() bounds every send with a timeout and logs
failures instead of raising, so a channel outage never rolls back a state
transition.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass
class QuickReply:
    title: str
    payload: str


@dataclass
class Button:
    title: str
    payload: str


@dataclass
class Card:
    """A product card with its action buttons."""
    title: str
    subtitle: str = ""
    image_url: Optional[str] = None
    buttons: List[Button] = field(default_factory=list)


@dataclass
class Reply:
    """
    Everything the bot sends back for one turn.

    Attributes:
        text: Main message (also what gets stored in the message log)
        buttons: Buttons attached to the main message
        cards: Product cards sent after the main message
        followups: Extra plain-text messages sent after the cards
        quick_replies: Short options sent last, with their own prompt
        quick_reply_prompt: Text shown with the quick replies
    """
    text: str
    buttons: List[Button] = field(default_factory=list)
    cards: List[Card] = field(default_factory=list)
    followups: List[str] = field(default_factory=list)
    quick_replies: List[QuickReply] = field(default_factory=list)
    quick_reply_prompt: str = "¿Te puedo ayudar con algo más?"


class Messenger(ABC):
    """
    Chat channel adapter. Implementations may raise on failure;
    deliver_reply() takes care of containment.
    """

    @abstractmethod
    async def send_text(self, channel_id: str, text: str) -> None:
        pass

    @abstractmethod
    async def send_buttons(self, channel_id: str, text: str, buttons: List[Button]) -> None:
        pass

    @abstractmethod
    async def send_quick_replies(self, channel_id: str, text: str, replies: List[QuickReply]) -> None:
        pass

    @abstractmethod
    async def send_cards(self, channel_id: str, cards: List[Card]) -> None:
        pass

    async def mark_seen(self, channel_id: str) -> None:
        """Acknowledge receipt. No-op on channels without read receipts."""
        return None

    async def set_typing(self, channel_id: str, on: bool) -> None:
        """Toggle the typing indicator. No-op on channels without one."""
        return None


async def safe_send(description: str, coro, timeout: float) -> bool:
    """
    Await a messenger call with a timeout, logging instead of raising.

    Returns:
        True if the call completed
    """
    try:
        await asyncio.wait_for(coro, timeout=timeout)
        return True
    except asyncio.TimeoutError:
        logger.warning(f"Messaging timeout ({timeout}s) while sending {description}")
    except Exception as e:
        logger.error(f"Messaging failure while sending {description}: {e}")
    return False


async def deliver_reply(
    messenger: Messenger,
    channel_id: str,
    reply: Reply,
    timeout: float = 5.0,
) -> int:
    """
    Send every part of a reply, in order.

    Returns:
        Number of parts that failed
    """
    failures = 0

    if reply.buttons:
        ok = await safe_send("buttons", messenger.send_buttons(channel_id, reply.text, reply.buttons), timeout)
    else:
        ok = await safe_send("text", messenger.send_text(channel_id, reply.text), timeout)
    failures += not ok

    if reply.cards:
        failures += not await safe_send("cards", messenger.send_cards(channel_id, reply.cards), timeout)

    for followup in reply.followups:
        failures += not await safe_send("followup", messenger.send_text(channel_id, followup), timeout)

    if reply.quick_replies:
        failures += not await safe_send(
            "quick replies",
            messenger.send_quick_replies(channel_id, reply.quick_reply_prompt, reply.quick_replies),
            timeout,
        )

    return failures
