"""Built-in hooks for URL rewriting, body rewriting, logging and persistence."""

from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, Callable, Union

from . import BodyType, CompletedRequest, TransformContext, UrlRewrite, invoke
from ..state import KeyValueStore

logger = logging.getLogger("hookline.hooks")

PERSISTENCE_KEY = "hookline_requests"
DEFAULT_PERSISTENCE_MAX_SIZE = 1000

Matcher = Union[str, re.Pattern[str]]
UrlReplacement = Union[str, Callable[[str, re.Match[str]], Any]]


def compile_url_matcher(matcher: Matcher) -> re.Pattern[str]:
    """A plain string matches one exact URL; a compiled pattern is used as is."""
    if isinstance(matcher, str):
        return re.compile("^" + re.escape(matcher) + "$")
    return matcher


def compile_text_matcher(matcher: Matcher) -> re.Pattern[str]:
    """A plain string matches every literal occurrence."""
    if isinstance(matcher, str):
        return re.compile(re.escape(matcher))
    return matcher


def url_replacer(matcher: Matcher, replacement: UrlReplacement, *, log: bool = True):
    """Build a url-replace hook.

    ``replacement`` is either a string (``\\1`` group references work when
    ``matcher`` is a pattern) or a callable ``(url, match) -> new_url``.
    """
    pattern = compile_url_matcher(matcher)
    literal = isinstance(matcher, str)

    async def replace_url(rewrite: UrlRewrite) -> UrlRewrite:
        match = pattern.search(rewrite.url)
        if match is None:
            return rewrite

        if callable(replacement):
            new_url = str(await invoke(replacement, rewrite.url, match))
        elif literal:
            new_url = pattern.sub(lambda _m: replacement, rewrite.url, count=1)
        else:
            new_url = pattern.sub(replacement, rewrite.url, count=1)

        if log:
            print(f"[URL] {rewrite.url} -> {new_url}")
        rewrite.url = new_url
        return rewrite

    return replace_url


def text_replacer(matcher: Matcher, replacement: str | Callable[[re.Match[str]], str], *, log: bool = True):
    """Build a data-transform hook that rewrites text and JSON bodies.

    JSON bodies are rewritten in their compact serialized form (no spaces
    after separators, non-ASCII kept as is) and handed back as text; the
    pipeline parses them again.
    """
    pattern = compile_text_matcher(matcher)
    repl = (lambda _m: replacement) if isinstance(matcher, str) and isinstance(replacement, str) else replacement

    def replace_text(ctx: TransformContext) -> TransformContext:
        response = ctx.response
        if response.body_type not in (BodyType.TEXT, BodyType.JSON) or response.body is None:
            return ctx

        if response.body_type is BodyType.JSON:
            content = json.dumps(response.body, ensure_ascii=False, separators=(",", ":"))
        else:
            content = response.body if isinstance(response.body, str) else str(response.body)

        if pattern.search(content) is None:
            return ctx

        response.body = pattern.sub(repl, content)
        if log:
            print(f"[BODY] content replaced in response from {response.request_data.url}")
        return ctx

    return replace_text


def request_logger(*, detailed: bool = False):
    """Build an after-request hook printing one line per completed request."""

    def log_request(exchange: CompletedRequest) -> None:
        request, response = exchange.request, exchange.response
        print(f"[REQ] {request.method} {request.url} | {response.status} | id={request.id}")
        if detailed:
            print(f"  body: {response.body_type.value} | headers: {json.dumps(response.headers)}")

    return log_request


def _jsonable_body(body: Any) -> tuple[Any, str | None]:
    if isinstance(body, (bytes, bytearray)):
        return base64.b64encode(bytes(body)).decode("ascii"), "base64"
    return body, None


def request_persister(
    store: KeyValueStore,
    *,
    max_size: int = DEFAULT_PERSISTENCE_MAX_SIZE,
    save_body: bool = False,
):
    """Build an after-request hook saving request summaries to ``store``.

    Summaries are kept newest first and truncated to ``max_size``.
    Storage failures are logged and never reach the request.
    """

    def persist_request(exchange: CompletedRequest) -> None:
        request, response = exchange.request, exchange.response
        try:
            stored = load_persisted_requests(store)
            entry: dict[str, Any] = {
                "id": request.id,
                "url": request.url,
                "method": request.method,
                "status": response.status,
                "timestamp": response.timestamp,
                "body": None,
            }
            if save_body:
                entry["body"], encoding = _jsonable_body(response.body)
                if encoding:
                    entry["body_encoding"] = encoding
            stored.insert(0, entry)
            del stored[max_size:]
            store.set_item(PERSISTENCE_KEY, json.dumps(stored))
        except Exception:
            logger.warning("Failed to persist request data", exc_info=True)

    return persist_request


def load_persisted_requests(store: KeyValueStore) -> list[dict[str, Any]]:
    """Return persisted request summaries, newest first."""
    raw = store.get_item(PERSISTENCE_KEY)
    if not raw:
        return []
    stored = json.loads(raw)
    return stored if isinstance(stored, list) else []


def clear_persisted_requests(store: KeyValueStore) -> None:
    store.remove_item(PERSISTENCE_KEY)
