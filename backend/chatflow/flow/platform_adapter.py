"""
Platform Adapter - maps a generic rich message to what each channel can render.

Facebook/Instagram render buttons and quick replies natively.
Telegram gets keyboards: buttons become an inline keyboard, quick replies a
one-shot reply keyboard.
Everything else (Twitter/X, Bluesky, Reddit and unknown platforms) gets the
options appended to the text as a numbered list, and numeric replies are
parsed back with parse_numbered_response().
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..models.flow import MessageButton, MessageContent, QuickReply
from ..models.workspace import Platform

RICH_NATIVE_PLATFORMS = {Platform.FACEBOOK.value, Platform.INSTAGRAM.value}
KEYBOARD_PLATFORMS = {Platform.TELEGRAM.value}


@dataclass
class AdaptedMessage:
    """Platform-shaped message ready for the gateway"""
    text: str = ""
    image_url: Optional[str] = None
    quick_replies: List[QuickReply] = field(default_factory=list)
    buttons: List[MessageButton] = field(default_factory=list)
    reply_markup: Optional[Dict[str, Any]] = None

    def attachments(self) -> Optional[List[Dict[str, str]]]:
        """Attachment list for the gateway and the stored message row"""
        if not self.image_url:
            return None
        return [{"type": "image", "url": self.image_url}]


def adapt_message(content: MessageContent, platform: Optional[str]) -> AdaptedMessage:
    """Adapt a generic message for a platform tag"""
    if platform in RICH_NATIVE_PLATFORMS:
        return _adapt_for_rich(content)
    if platform in KEYBOARD_PLATFORMS:
        return _adapt_for_keyboard(content)
    return _adapt_for_text_only(content)


def _adapt_for_rich(content: MessageContent) -> AdaptedMessage:
    return AdaptedMessage(
        text=content.text or "",
        image_url=content.image_url,
        quick_replies=list(content.quick_replies),
        buttons=list(content.buttons),
    )


def _adapt_for_keyboard(content: MessageContent) -> AdaptedMessage:
    text = content.text or ""

    # Buttons win over quick replies
    if content.buttons:
        keyboard = []
        for button in content.buttons:
            if button.type == "url":
                keyboard.append([{"text": button.title, "url": button.url}])
            else:
                keyboard.append([{"text": button.title, "callbackData": button.payload}])
        return AdaptedMessage(
            text=text,
            image_url=content.image_url,
            reply_markup={"type": "inline_keyboard", "keyboard": keyboard},
        )

    if content.quick_replies:
        return AdaptedMessage(
            text=text,
            image_url=content.image_url,
            reply_markup={
                "type": "reply_keyboard",
                "keyboard": [[{"text": qr.title}] for qr in content.quick_replies],
                "oneTime": True,
            },
        )

    return AdaptedMessage(text=text, image_url=content.image_url)


def _adapt_for_text_only(content: MessageContent) -> AdaptedMessage:
    text = content.text or ""
    options = content.buttons or content.quick_replies

    if options:
        options_list = "\n".join(f"{i}. {opt.title}" for i, opt in enumerate(options, start=1))
        text = f"{text}\n\n{options_list}" if text else options_list

    return AdaptedMessage(text=text, image_url=content.image_url)


def parse_numbered_response(text: Optional[str], options: Sequence[QuickReply]) -> Optional[str]:
    """
    Map a bare numeric reply ("1", "2", ...) back to the option's payload.

    Returns None for non-numeric input or a number outside 1..len(options).
    """
    if not text:
        return None

    stripped = text.strip()
    if not stripped.isdigit():
        return None

    number = int(stripped)
    if number < 1 or number > len(options):
        return None

    return options[number - 1].payload
