"""Pydantic data models for the parts of the Telegram Bot API the core touches.

The response envelope, the ``Update`` record and the handful of objects the
update-delivery engines and :class:`~bot.context.Context` helpers read.  Every
other object stays a plain dict inside ``Update`` so that unknown or future
fields survive decoding untouched.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

# Every event-type field an Update may carry, in Bot API documentation order.
# Also the only names accepted in an ``allowed_updates`` filter.
UPDATE_TYPES: tuple[str, ...] = (
    "message",
    "edited_message",
    "channel_post",
    "edited_channel_post",
    "business_connection",
    "business_message",
    "edited_business_message",
    "deleted_business_messages",
    "message_reaction",
    "message_reaction_count",
    "inline_query",
    "chosen_inline_result",
    "callback_query",
    "shipping_query",
    "pre_checkout_query",
    "purchased_paid_media",
    "poll",
    "poll_answer",
    "my_chat_member",
    "chat_member",
    "chat_join_request",
    "chat_boost",
    "removed_chat_boost",
)


class ResponseParameters(BaseModel):
    """Describes why a request was unsuccessful."""

    migrate_to_chat_id: Optional[int] = None
    retry_after: Optional[int] = None

    model_config = {"populate_by_name": True}


class APIResponse(BaseModel):
    """The envelope every Bot API call answers with.

    ``result`` is left undecoded; the executor validates it against the
    caller's requested type only when ``ok`` is true.
    """

    ok: bool
    error_code: Optional[int] = None
    description: Optional[str] = None
    parameters: Optional[ResponseParameters] = None
    result: Any = None

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _failure_is_described(self) -> "APIResponse":
        if not self.ok and (self.error_code is None or self.description is None):
            raise ValueError("unsuccessful response must carry error_code and description")
        return self


class User(BaseModel):
    """This object represents a Telegram user or bot."""

    id: int
    is_bot: bool
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class Chat(BaseModel):
    """This object represents a chat."""

    id: int
    type: str
    title: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class MessageEntity(BaseModel):
    """One special entity in a text message (hashtag, URL, command, …)."""

    type: str
    offset: int
    length: int
    url: Optional[str] = None
    user: Optional[User] = None
    language: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class Message(BaseModel):
    """This object represents a message."""

    message_id: int
    date: int
    chat: Chat
    message_thread_id: Optional[int] = None
    from_field: Optional[User] = Field(None, alias="from")
    sender_chat: Optional[Chat] = None
    reply_to_message: Optional[Message] = None
    edit_date: Optional[int] = None
    text: Optional[str] = None
    entities: Optional[List[MessageEntity]] = None
    caption: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class CallbackQuery(BaseModel):
    """An incoming callback query from an inline keyboard button."""

    id: str
    from_field: User = Field(..., alias="from")
    chat_instance: str
    message: Optional[Message] = None
    inline_message_id: Optional[str] = None
    data: Optional[str] = None
    game_short_name: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class Update(BaseModel):
    """An incoming update.  At most **one** of the optional event fields is present."""

    update_id: int
    message: Optional[Message] = None
    edited_message: Optional[Message] = None
    channel_post: Optional[Message] = None
    edited_channel_post: Optional[Message] = None
    business_connection: Optional[Dict[str, Any]] = None
    business_message: Optional[Message] = None
    edited_business_message: Optional[Message] = None
    deleted_business_messages: Optional[Dict[str, Any]] = None
    message_reaction: Optional[Dict[str, Any]] = None
    message_reaction_count: Optional[Dict[str, Any]] = None
    inline_query: Optional[Dict[str, Any]] = None
    chosen_inline_result: Optional[Dict[str, Any]] = None
    callback_query: Optional[CallbackQuery] = None
    shipping_query: Optional[Dict[str, Any]] = None
    pre_checkout_query: Optional[Dict[str, Any]] = None
    purchased_paid_media: Optional[Dict[str, Any]] = None
    poll: Optional[Dict[str, Any]] = None
    poll_answer: Optional[Dict[str, Any]] = None
    my_chat_member: Optional[Dict[str, Any]] = None
    chat_member: Optional[Dict[str, Any]] = None
    chat_join_request: Optional[Dict[str, Any]] = None
    chat_boost: Optional[Dict[str, Any]] = None
    removed_chat_boost: Optional[Dict[str, Any]] = None

    model_config = {"populate_by_name": True, "extra": "allow"}

    @property
    def event_type(self) -> Optional[str]:
        """Name of the populated event field, or ``None`` for an unknown kind."""
        for name in UPDATE_TYPES:
            if getattr(self, name) is not None:
                return name
        return None

    @property
    def effective_message(self) -> Optional[Message]:
        """The message this update is about, whichever field carries it."""
        message = (
            self.message
            or self.edited_message
            or self.channel_post
            or self.edited_channel_post
            or self.business_message
            or self.edited_business_message
        )
        if message is None and self.callback_query is not None:
            message = self.callback_query.message
        return message

    @property
    def effective_chat(self) -> Optional[Chat]:
        message = self.effective_message
        return message.chat if message is not None else None


class WebhookInfo(BaseModel):
    """Contains information about the current status of a webhook."""

    url: str
    has_custom_certificate: bool
    pending_update_count: int
    ip_address: Optional[str] = None
    last_error_date: Optional[int] = None
    last_error_message: Optional[str] = None
    last_synchronization_error_date: Optional[int] = None
    max_connections: Optional[int] = None
    allowed_updates: Optional[List[str]] = None

    model_config = {"populate_by_name": True}
