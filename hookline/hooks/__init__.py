"""Hook channels and the payloads that flow through them.

Every intercepted request passes through a fixed set of channels. Each
channel is an ordered list of hooks; a hook receives the channel payload
and returns a (possibly modified) payload, or ``None`` to leave it as is.
Hooks execute sequentially with error isolation: one hook failure
doesn't break the chain.
"""

from __future__ import annotations

import inspect
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Union

import httpx

from ..errors import UnknownChannelError


class HookChannel(Enum):
    """Pipeline stages that hooks can subscribe to."""

    BEFORE_REQUEST = "before_request"  # Before the request is sent
    URL_REPLACE = "url_replace"  # Rewrite the target URL
    DATA_TRANSFORM = "data_transform"  # Rewrite the decoded response body
    AFTER_REQUEST = "after_request"  # After the response is finalized
    ON_ERROR = "on_error"  # The request failed before a response existed

    @classmethod
    def parse(cls, name: HookChannel | str) -> HookChannel:
        """Resolve a channel from its enum member or external name.

        Accepts ``before_request`` and ``before-request`` spellings.
        """
        if isinstance(name, cls):
            return name
        if isinstance(name, str):
            try:
                return cls(name.strip().replace("-", "_").lower())
            except ValueError:
                pass
        raise UnknownChannelError(name)


class BodyType(Enum):
    """How a response body was classified and decoded."""

    JSON = "json"
    TEXT = "text"
    BINARY = "binary"
    UNKNOWN = "unknown"


# Hooks may be plain functions or coroutine functions
HookFn = Callable[[Any], Union[Any, Awaitable[Any]]]


@dataclass
class HookEntry:
    """A callback registered on a channel."""

    id: str
    callback: HookFn
    priority: int = 0
    enabled: bool = True
    sequence: int = 0


@dataclass
class RequestDescriptor:
    """What the pipeline knows about an outgoing request."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: new_id("req"))
    url_replaced: bool = False

    @classmethod
    def from_resource(
        cls, resource: str | httpx.URL | httpx.Request, options: dict[str, Any]
    ) -> RequestDescriptor:
        if isinstance(resource, httpx.Request):
            url = str(resource.url)
            method = options.get("method") or resource.method
            headers = options.get("headers") or resource.headers
            body = options.get("content")
            if body is None:
                try:
                    body = resource.content
                except httpx.RequestNotRead:
                    body = None
        else:
            url = str(resource)
            method = options.get("method") or "GET"
            headers = options.get("headers") or {}
            body = options.get("content")

        if isinstance(body, str):
            body = body.encode("utf-8")
        elif not isinstance(body, (bytes, type(None))):
            # Streams and iterators are not captured
            body = None

        return cls(
            url=url,
            method=method.upper(),
            headers=dict(headers.items()) if hasattr(headers, "items") else dict(headers),
            body=body,
        )


@dataclass
class ResponseSnapshot:
    """Decoded view of a response, shared with data-transform and after-request hooks."""

    status: int
    status_text: str
    headers: dict[str, str]
    url: str
    ok: bool
    request_data: RequestDescriptor
    timestamp: float = field(default_factory=time.time)
    body_type: BodyType = BodyType.UNKNOWN
    body: Any = None
    body_transformed: bool = False


@dataclass
class OutgoingRequest:
    """Payload of the before-request channel.

    ``resource`` is the URL string (or ``httpx.Request``) to send and
    ``options`` the httpx request keyword arguments (``method``,
    ``headers``, ``content``, ...).
    """

    resource: str | httpx.URL | httpx.Request
    options: dict[str, Any]
    request_data: RequestDescriptor


@dataclass
class UrlRewrite:
    """Payload of the url-replace channel."""

    url: str
    original_url: str


@dataclass
class TransformContext:
    """Payload of the data-transform channel.

    Hooks change ``response.body``; ``original_body`` is the body as
    decoded from the wire.
    """

    response: ResponseSnapshot
    original_body: Any


@dataclass
class CompletedRequest:
    """Payload of the after-request channel."""

    request: RequestDescriptor
    response: ResponseSnapshot
    original_response: httpx.Response


@dataclass
class RequestFailure:
    """Payload of the on-error channel."""

    request: RequestDescriptor
    error: BaseException
    timestamp: float = field(default_factory=time.time)


def new_id(prefix: str) -> str:
    """Return a fresh identifier such as ``hook_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


async def invoke(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call a sync or async callback and return its result."""
    result = fn(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
