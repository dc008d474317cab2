"""The HookSystem: one object owning the registry, startup, loops and store."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .config import DEFAULT_TIMEOUT, HooklineConfig, load_config
from .hooks import HookChannel, HookFn
from .hooks.builtin import (
    DEFAULT_PERSISTENCE_MAX_SIZE,
    Matcher,
    UrlReplacement,
    request_logger,
    request_persister,
    text_replacer,
    url_replacer,
)
from .hooks.chain import HookRegistry
from .hooks.loader import load_hooks_from_config
from .loops import TaskScheduler
from .pipeline import InterceptingTransport, InterceptionPipeline
from .startup import StartupCoordinator
from .state import JsonFileStore, KeyValueStore
from .store import AUTO_SAVE_HOOK_ID, AUTO_SAVE_PRIORITY, RequestStore, StoredRecord

logger = logging.getLogger("hookline")


class HookSystem:
    """Request interception with hooks, startup processes and event loops.

    Create one per process and close it with :meth:`aclose` (or use it as
    an async context manager)::

        async with HookSystem() as hooks:
            hooks.replace_url("https://api.old.com/data", "https://api.new.com/data")
            response = await hooks.fetch("https://api.old.com/data")

    ``transport`` is the httpx transport used by :meth:`fetch`; it defaults
    to a regular network transport.
    """

    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        auto_save: bool = True,
    ) -> None:
        self.registry = HookRegistry()
        self.startup = StartupCoordinator()
        self.loops = TaskScheduler()
        self.store = RequestStore()
        self.pipeline = InterceptionPipeline(self.registry, self.startup, send=self._send)

        self._transport = transport
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

        if auto_save:
            self.registry.register(
                HookChannel.AFTER_REQUEST,
                self.store.auto_save,
                id=AUTO_SAVE_HOOK_ID,
                priority=AUTO_SAVE_PRIORITY,
            )

    @classmethod
    def from_config(cls, config: HooklineConfig | None = None, **kwargs: Any) -> HookSystem:
        """Build a system with the presets and hooks named in ``config``."""
        if config is None:
            config = load_config()
        kwargs.setdefault("timeout", config.timeout)
        system = cls(**kwargs)
        system.apply_config(config)
        return system

    def apply_config(self, config: HooklineConfig) -> None:
        for rule in config.url_replacements:
            self.replace_url(rule.compiled_matcher(), rule.replacement, log=config.logging.enabled)
        for rule in config.text_replacements:
            self.replace_text(rule.compiled_matcher(), rule.replacement, log=config.logging.enabled)
        if config.logging.enabled:
            self.enable_logging(detailed=config.logging.detailed)
        if config.persistence.enabled:
            self.enable_persistence(
                max_size=config.persistence.max_size,
                save_body=config.persistence.save_body,
                store=JsonFileStore(config.persistence.path),
            )
        if config.raw.get("hooks") or config.raw.get("startup"):
            count = load_hooks_from_config(config.raw, self.registry, startup=self.startup)
            logger.debug("Loaded %d hook(s) from %s", count, config.path)

    # Hook management

    def register(
        self,
        channel: HookChannel | str,
        callback: HookFn,
        *,
        priority: int = 0,
        id: str | None = None,
        enabled: bool = True,
    ) -> str:
        return self.registry.register(channel, callback, priority=priority, id=id, enabled=enabled)

    def remove(self, channel: HookChannel | str, hook_id: str) -> None:
        self.registry.remove(channel, hook_id)

    def before(self, callback: HookFn, **options: Any) -> str:
        return self.register(HookChannel.BEFORE_REQUEST, callback, **options)

    def after(self, callback: HookFn, **options: Any) -> str:
        return self.register(HookChannel.AFTER_REQUEST, callback, **options)

    def on_error(self, callback: HookFn, **options: Any) -> str:
        return self.register(HookChannel.ON_ERROR, callback, **options)

    def transform(self, callback: HookFn, **options: Any) -> str:
        return self.register(HookChannel.DATA_TRANSFORM, callback, **options)

    # Presets

    def replace_url(
        self, matcher: Matcher, replacement: UrlReplacement, *, log: bool = True, **options: Any
    ) -> str:
        """Rewrite matching request URLs. A string matcher must equal the whole URL."""
        return self.register(HookChannel.URL_REPLACE, url_replacer(matcher, replacement, log=log), **options)

    def replace_text(self, matcher: Matcher, replacement: Any, *, log: bool = True, **options: Any) -> str:
        """Rewrite text and JSON response bodies."""
        return self.register(HookChannel.DATA_TRANSFORM, text_replacer(matcher, replacement, log=log), **options)

    def enable_logging(self, *, detailed: bool = False, **options: Any) -> str:
        options.setdefault("id", "logger")
        return self.register(HookChannel.AFTER_REQUEST, request_logger(detailed=detailed), **options)

    def enable_persistence(
        self,
        *,
        max_size: int = DEFAULT_PERSISTENCE_MAX_SIZE,
        save_body: bool = False,
        store: KeyValueStore | None = None,
        **options: Any,
    ) -> str:
        """Save request summaries to ``store`` (a JSON state file by default)."""
        options.setdefault("id", "persistence")
        persister = request_persister(
            store if store is not None else JsonFileStore(),
            max_size=max_size,
            save_body=save_body,
        )
        return self.register(HookChannel.AFTER_REQUEST, persister, **options)

    # Storage

    def get_requests(self, request_id: str | None = None) -> StoredRecord | dict[str, StoredRecord] | None:
        """Return one stored record by id, or all records keyed by id."""
        if request_id:
            return self.store.get(request_id)
        return self.store.get_all()

    def clear_storage(self) -> None:
        self.store.clear()

    # Requests

    async def fetch(self, resource: str | httpx.URL | httpx.Request, **options: Any) -> httpx.Response:
        """Send a request through the hook pipeline.

        ``options`` are :class:`httpx.Request` keyword arguments
        (``method``, ``headers``, ``content``, ``json``, ...).
        """
        return await self.pipeline.fetch(resource, **options)

    def transport(self, inner: httpx.AsyncBaseTransport | None = None) -> InterceptingTransport:
        """Wrap an httpx transport so its requests go through the pipeline."""
        return InterceptingTransport(self.pipeline, inner)

    def client(self, inner: httpx.AsyncBaseTransport | None = None, **kwargs: Any) -> httpx.AsyncClient:
        """Return an AsyncClient whose requests go through the pipeline.

        The caller owns the client and must close it.
        """
        kwargs.setdefault("timeout", self._timeout)
        return httpx.AsyncClient(transport=self.transport(inner), **kwargs)

    async def _send(self, request: httpx.Request) -> httpx.Response:
        if self._client is None:
            self._client = httpx.AsyncClient(transport=self._transport, timeout=self._timeout)
        # Requests built outside the client carry no timeout of their own
        request.extensions.setdefault("timeout", self._client.timeout.as_dict())
        return await self._client.send(request)

    # Lifecycle

    async def aclose(self) -> None:
        """Stop every loop, cancel pending startup runs and release storage."""
        await self.loops.shutdown()
        await self.startup.aclose()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self.store.clear()

    async def __aenter__(self) -> HookSystem:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
