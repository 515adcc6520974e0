"""
swoon.engine.gifts — Gift State Machine & Reveal Rules
========================================================

A gift moves ``SENT → VIEWED → ACCEPTED | REJECTED``.  The state is
derived from two columns (``is_viewed`` and the tri-state ``is_accepted``)
so there is never a stored state that disagrees with them.

What the receiver's decision unlocks depends on flags captured on the gift
row at send time:

* accepted + ``shares_contact_info`` → the sender's contact info is revealed
* accepted + ``can_send_message``    → the special message is revealed

Pure functions — no database access.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from swoon.errors import InvalidGiftMessage

if TYPE_CHECKING:
    from swoon.database.models import Gift

# Control characters other than newline / tab
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class GiftState(enum.StrEnum):
    SENT = "SENT"
    VIEWED = "VIEWED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


@dataclass(frozen=True, slots=True)
class Reveal:
    contact_revealed: bool
    message_revealed: bool


def state_of(is_viewed: bool, is_accepted: bool | None) -> GiftState:
    if is_accepted is True:
        return GiftState.ACCEPTED
    if is_accepted is False:
        return GiftState.REJECTED
    return GiftState.VIEWED if is_viewed else GiftState.SENT


def gift_state(gift: Gift) -> GiftState:
    return state_of(gift.is_viewed, gift.is_accepted)


def reveal_for(gift: Gift) -> Reveal:
    """What the receiver may see, based on the flags captured at send time."""
    accepted = gift.is_accepted is True
    return Reveal(
        contact_revealed=accepted and gift.shares_contact_info,
        message_revealed=accepted and gift.can_send_message and bool(gift.special_message),
    )


def clean_message(
    message: str | None,
    *,
    can_send_message: bool,
    min_length: int,
    max_length: int,
) -> str | None:
    """Validate and normalise a gift's special message.

    Blank messages count as no message.

    Raises
    ------
    InvalidGiftMessage
        A message on a tier that cannot carry one, or outside the
        configured length bounds.
    """
    if message is None:
        return None
    text = _CONTROL_CHARS.sub("", message).strip()
    if not text:
        return None
    if not can_send_message:
        raise InvalidGiftMessage("This gift tier cannot carry a message")
    if len(text) < min_length:
        raise InvalidGiftMessage(
            f"Message must be at least {min_length} characters",
            min_length=min_length,
        )
    if len(text) > max_length:
        raise InvalidGiftMessage(
            f"Message must be at most {max_length} characters",
            max_length=max_length,
        )
    return text
