"""
Request interception pipeline.

Wraps one outbound httpx request in the hook channels:

    ensure_startup -> before_request -> url_replace -> transport
        -> decode body -> data_transform -> after_request

Failures before a response exists run the on_error channel and are
re-raised unchanged. Body decoding problems are absorbed. A transform
that corrupts a JSON body raises :class:`TransformParseError`.
"""

from __future__ import annotations

import copy
import dataclasses
import json
import logging
from typing import Any, Awaitable, Callable

import httpx

from .errors import TransformParseError
from .hooks import (
    BodyType,
    CompletedRequest,
    HookChannel,
    OutgoingRequest,
    RequestDescriptor,
    RequestFailure,
    ResponseSnapshot,
    TransformContext,
    UrlRewrite,
)
from .hooks.chain import HookRegistry
from .startup import StartupCoordinator

logger = logging.getLogger("hookline.pipeline")

Send = Callable[[httpx.Request], Awaitable[httpx.Response]]

# Headers that describe the wire body and no longer hold once it is replaced
_BODY_HEADERS = {"content-length", "content-encoding", "transfer-encoding"}
# Headers httpx derives from the URL and body when building a request
_DERIVED_REQUEST_HEADERS = {"host", "content-length", "transfer-encoding"}
_BODY_OPTIONS = ("content", "data", "files", "json")


def classify_body(response: httpx.Response) -> tuple[BodyType, Any]:
    """Decode a read response according to its declared content type.

    Never raises: anything that cannot be decoded is ``(UNKNOWN, None)``.
    """
    content_type = response.headers.get("content-type", "").lower()
    try:
        if "application/json" in content_type or "+json" in content_type:
            return BodyType.JSON, json.loads(response.content)
        if "text/" in content_type:
            return BodyType.TEXT, response.text
        return BodyType.BINARY, response.content
    except Exception:
        logger.debug("Could not decode %s body from %s", content_type or "untyped", response.url, exc_info=True)
        return BodyType.UNKNOWN, None


def encode_body(body: Any, encoding: str = "utf-8") -> bytes:
    """Serialize a transformed body for the wire."""
    if body is None:
        return b""
    if isinstance(body, (bytes, bytearray)):
        return bytes(body)
    if isinstance(body, str):
        return body.encode(encoding)
    return json.dumps(body).encode("utf-8")


def _rebuild_resource(resource: str | httpx.URL | httpx.Request, url: str) -> str | httpx.Request:
    if isinstance(resource, httpx.Request):
        return httpx.Request(
            resource.method,
            url,
            headers=[(k, v) for k, v in resource.headers.multi_items() if k.lower() != "host"],
            stream=resource.stream,
            extensions=resource.extensions,
        )
    return url


def build_request(resource: str | httpx.URL | httpx.Request, options: dict[str, Any]) -> httpx.Request:
    """Turn a pipeline resource plus httpx keyword options into a request."""
    if isinstance(resource, httpx.Request):
        extras = {k: v for k, v in options.items() if k not in ("method", "headers")}
        if not extras and not options.get("headers") and not options.get("method"):
            return resource
        headers = httpx.Headers(resource.headers)
        headers.update(options.get("headers") or {})
        if any(k in extras for k in _BODY_OPTIONS):
            headers.pop("content-length", None)
        else:
            extras["stream"] = resource.stream
        extras.setdefault("extensions", resource.extensions)
        return httpx.Request(options.get("method") or resource.method, resource.url, headers=headers, **extras)

    kwargs = {k: v for k, v in options.items() if k != "method"}
    return httpx.Request(options.get("method") or "GET", resource, **kwargs)


class InterceptionPipeline:
    """Runs the hook channels around a single outbound request."""

    def __init__(
        self,
        registry: HookRegistry,
        startup: StartupCoordinator,
        send: Send | None = None,
    ) -> None:
        self.registry = registry
        self.startup = startup
        self._send = send

    async def fetch(self, resource: str | httpx.URL | httpx.Request, **options: Any) -> httpx.Response:
        """Send a request through the pipeline using the default transport."""
        if self._send is None:
            raise RuntimeError("InterceptionPipeline has no default transport")
        return await self.run(resource, options, self._send)

    async def run(
        self,
        resource: str | httpx.URL | httpx.Request,
        options: dict[str, Any],
        send: Send,
    ) -> httpx.Response:
        options = dict(options)
        options["headers"] = httpx.Headers(options.get("headers"))
        if not isinstance(resource, httpx.Request):
            resource = str(resource)
            options.setdefault("method", "GET")

        request_data = RequestDescriptor.from_resource(resource, options)
        if "json" in options and request_data.body is None:
            request_data.body = json.dumps(options["json"]).encode("utf-8")

        try:
            await self.startup.ensure_startup(
                "fetch", {"url": request_data.url, "method": request_data.method}
            )

            outgoing = await self.registry.execute(
                HookChannel.BEFORE_REQUEST,
                OutgoingRequest(
                    resource=resource,
                    options=options,
                    request_data=copy.deepcopy(request_data),
                ),
            )
            final_resource = await self._replace_url(outgoing, request_data.url)

            request = build_request(final_resource, outgoing.options)
            response = await send(request)
            try:
                response.request
            except RuntimeError:
                response.request = request
            # Buffer the body once; httpx replays it to the caller
            await response.aread()
        except Exception as error:
            await self.registry.execute(
                HookChannel.ON_ERROR,
                RequestFailure(request=request_data, error=error),
            )
            raise

        return await self._finish(response, outgoing.request_data)

    async def _replace_url(self, outgoing: OutgoingRequest, original_url: str) -> str | httpx.Request:
        current_url = outgoing.request_data.url
        rewrite = await self.registry.execute(
            HookChannel.URL_REPLACE,
            UrlRewrite(url=current_url, original_url=original_url),
        )
        new_url = getattr(rewrite, "url", current_url)
        if not new_url or new_url == current_url:
            return outgoing.resource

        logger.debug("URL replaced: %s -> %s", current_url, new_url)
        outgoing.request_data.url = str(new_url)
        outgoing.request_data.url_replaced = True
        return _rebuild_resource(outgoing.resource, str(new_url))

    async def _finish(self, response: httpx.Response, request_data: RequestDescriptor) -> httpx.Response:
        body_type, body = classify_body(response)
        snapshot = ResponseSnapshot(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=dict(response.headers.items()),
            url=str(response.url),
            ok=response.is_success,
            request_data=request_data,
            body_type=body_type,
            body=body,
        )

        result = await self.registry.execute(
            HookChannel.DATA_TRANSFORM,
            TransformContext(
                response=dataclasses.replace(snapshot, body=copy.deepcopy(body)),
                original_body=body,
            ),
        )
        new_body = result.response.body if isinstance(result, TransformContext) else body

        final = response
        if new_body != body:
            final = self._rebuild_response(response, snapshot, new_body)

        await self.registry.execute(
            HookChannel.AFTER_REQUEST,
            CompletedRequest(request=request_data, response=snapshot, original_response=response),
        )
        return final

    def _rebuild_response(self, response: httpx.Response, snapshot: ResponseSnapshot, new_body: Any) -> httpx.Response:
        if isinstance(new_body, (str, bytes, bytearray)):
            content = encode_body(new_body, response.encoding or "utf-8")
            if snapshot.body_type is BodyType.JSON:
                try:
                    new_body = json.loads(content)
                except ValueError as e:
                    raise TransformParseError(snapshot.request_data.url, e) from e
        else:
            content = encode_body(new_body)

        snapshot.body = new_body
        snapshot.body_transformed = True

        return httpx.Response(
            response.status_code,
            headers=[(k, v) for k, v in response.headers.multi_items() if k.lower() not in _BODY_HEADERS],
            content=content,
            request=response.request,
            extensions=dict(response.extensions),
        )


class InterceptingTransport(httpx.AsyncBaseTransport):
    """httpx transport that routes every request through a pipeline.

    Usage::

        client = httpx.AsyncClient(transport=InterceptingTransport(pipeline))
    """

    def __init__(self, pipeline: InterceptionPipeline, inner: httpx.AsyncBaseTransport | None = None) -> None:
        self.pipeline = pipeline
        self.inner = inner or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        content = await request.aread()
        options: dict[str, Any] = {
            "method": request.method,
            "headers": [
                (k, v) for k, v in request.headers.multi_items() if k.lower() not in _DERIVED_REQUEST_HEADERS
            ],
            "content": content,
            "extensions": request.extensions,
        }
        return await self.pipeline.run(str(request.url), options, self.inner.handle_async_request)

    async def aclose(self) -> None:
        await self.inner.aclose()
