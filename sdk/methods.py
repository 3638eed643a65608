"""Request bodies: the ``RequestBody`` protocol and the methods the core sends.

A request body knows four things: which endpoint it targets, whether its
parameters are acceptable, how to turn itself into a byte stream, and which
``Content-Type`` describes that stream.  :func:`sdk.client.send_request`
relies on nothing else, so any object with these four methods can be sent.

Bodies are plain dataclasses.  JSON bodies serialize through a pydantic
``TypeAdapter``; bodies carrying an :class:`InputFile` switch to
``multipart/form-data`` encoded by urllib3.
"""

from __future__ import annotations

import io
import json
import os
import re
from dataclasses import dataclass, fields
from functools import lru_cache
from typing import Any, BinaryIO, ClassVar, Dict, Iterable, List, Optional, Protocol, Union, runtime_checkable

from pydantic import TypeAdapter
from urllib3 import encode_multipart_formdata

from sdk.exceptions import LocalValidationError
from sdk.models import UPDATE_TYPES

ALLOWED_UPDATE_TYPES: frozenset[str] = frozenset(UPDATE_TYPES)

_SECRET_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{1,256}$")


@runtime_checkable
class RequestBody(Protocol):
    """Anything the request executor can send."""

    def endpoint(self) -> str: ...  # noqa: E704

    def validate(self) -> None: ...  # noqa: E704

    def reader(self) -> BinaryIO: ...  # noqa: E704

    def content_type(self) -> str: ...  # noqa: E704


@dataclass
class InputFile:
    """A file uploaded as part of a multipart request."""

    content: bytes
    filename: str = "file"

    @classmethod
    def from_path(cls, path: str) -> "InputFile":
        with open(path, "rb") as fh:
            return cls(content=fh.read(), filename=os.path.basename(path))


@lru_cache(maxsize=None)
def _adapter(cls: type) -> TypeAdapter:
    return TypeAdapter(cls)


def check_update_types(names: Optional[Iterable[str]]) -> List[str]:
    """Return one problem description per unknown update-type name."""
    if names is None:
        return []
    return [f"unknown update type: {name}" for name in names if name not in ALLOWED_UPDATE_TYPES]


@dataclass
class JSONMethod:
    """Base for bodies sent as ``application/json``.

    Subclasses set ``endpoint_name`` and declare their parameters as
    dataclass fields; ``None`` fields are left out of the payload.
    """

    endpoint_name: ClassVar[str] = ""

    def endpoint(self) -> str:
        return self.endpoint_name

    def validate(self) -> None:
        return None

    def payload(self) -> bytes:
        return _adapter(type(self)).dump_json(self, exclude_none=True)

    def reader(self) -> BinaryIO:
        return io.BytesIO(self.payload())

    def content_type(self) -> str:
        return "application/json"


@dataclass
class MultipartMethod(JSONMethod):
    """Base for bodies that may carry :class:`InputFile` fields.

    Without files the body behaves exactly like :class:`JSONMethod`.  With
    files, :meth:`reader` builds the form and fixes the boundary, so
    :meth:`content_type` is only valid after :meth:`reader` was called.
    """

    def has_files(self) -> bool:
        return any(isinstance(getattr(self, f.name), InputFile) for f in fields(self))

    def form_fields(self) -> Dict[str, Any]:
        form: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, InputFile):
                form[f.name] = (value.filename, value.content)
            elif isinstance(value, bool):
                form[f.name] = "true" if value else "false"
            elif isinstance(value, (list, tuple, dict)):
                form[f.name] = json.dumps(value)
            else:
                form[f.name] = str(value)
        return form

    def reader(self) -> BinaryIO:
        if not self.has_files():
            self._content_type = super().content_type()
            return super().reader()
        body, content_type = encode_multipart_formdata(self.form_fields())
        self._content_type = content_type
        return io.BytesIO(body)

    def content_type(self) -> str:
        if not self.has_files():
            return super().content_type()
        content_type = getattr(self, "_content_type", None)
        if content_type is None:
            raise RuntimeError("reader() must be called before content_type() on a multipart body")
        return content_type


# ── Getting updates ──────────────────────────────────────────────────────────


@dataclass
class GetUpdates(JSONMethod):
    """Receive incoming updates using long polling. Returns ``list[Update]``."""

    endpoint_name: ClassVar[str] = "getUpdates"

    offset: Optional[int] = None
    limit: Optional[int] = None
    timeout: Optional[int] = None
    allowed_updates: Optional[List[str]] = None

    def validate(self) -> None:
        if self.limit is not None and not 1 <= self.limit <= 100:
            raise LocalValidationError("limit must be between 1 and 100")
        if self.timeout is not None and self.timeout < 0:
            raise LocalValidationError("timeout must not be negative")
        problems = check_update_types(self.allowed_updates)
        if problems:
            raise LocalValidationError(problems[0])


@dataclass
class SetWebhook(MultipartMethod):
    """Register an HTTPS URL to receive updates. Returns ``True`` on success."""

    endpoint_name: ClassVar[str] = "setWebhook"

    url: str = ""
    certificate: Optional[InputFile] = None
    ip_address: Optional[str] = None
    max_connections: Optional[int] = None
    allowed_updates: Optional[List[str]] = None
    drop_pending_updates: Optional[bool] = None
    secret_token: Optional[str] = None

    def validate(self) -> None:
        if not self.url.strip():
            raise LocalValidationError("url parameter can't be empty")
        if self.max_connections is not None and not 1 <= self.max_connections <= 100:
            raise LocalValidationError("max_connections must be between 1 and 100")
        problems = check_update_types(self.allowed_updates)
        if problems:
            raise LocalValidationError(problems[0])
        if self.secret_token is not None and not _SECRET_TOKEN_RE.match(self.secret_token):
            raise LocalValidationError(
                "secret_token must be 1-256 characters long and contain only A-Z, a-z, 0-9, _ and -"
            )


@dataclass
class DeleteWebhook(JSONMethod):
    """Remove the webhook integration. Returns ``True`` on success."""

    endpoint_name: ClassVar[str] = "deleteWebhook"

    drop_pending_updates: Optional[bool] = None


@dataclass
class GetWebhookInfo(JSONMethod):
    """Current webhook status. Returns :class:`~sdk.models.WebhookInfo`."""

    endpoint_name: ClassVar[str] = "getWebhookInfo"


@dataclass
class GetMe(JSONMethod):
    """Basic information about the bot. Returns :class:`~sdk.models.User`."""

    endpoint_name: ClassVar[str] = "getMe"


# ── Messages ─────────────────────────────────────────────────────────────────


@dataclass
class SendMessage(JSONMethod):
    """Send a text message. Returns the sent :class:`~sdk.models.Message`."""

    endpoint_name: ClassVar[str] = "sendMessage"

    chat_id: Union[int, str] = 0
    text: str = ""
    message_thread_id: Optional[int] = None
    parse_mode: Optional[str] = None
    disable_notification: Optional[bool] = None
    protect_content: Optional[bool] = None
    reply_parameters: Optional[Dict[str, Any]] = None
    reply_markup: Optional[Dict[str, Any]] = None

    def validate(self) -> None:
        if isinstance(self.chat_id, str):
            if not self.chat_id.strip():
                raise LocalValidationError("chat_id parameter can't be empty")
        elif self.chat_id == 0:
            raise LocalValidationError("chat_id parameter can't be empty")
        if not 1 <= len(self.text) <= 4096:
            raise LocalValidationError("text parameter must be between 1 and 4096 characters")
