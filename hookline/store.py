"""In-memory store of completed request/response pairs."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from .hooks import CompletedRequest, RequestDescriptor, ResponseSnapshot

AUTO_SAVE_HOOK_ID = "auto-save"
# Runs after every other after-request hook so it sees the final snapshot
AUTO_SAVE_PRIORITY = -1000


@dataclass
class StoredRecord:
    """A completed request as saved by the auto-save hook."""
    request: RequestDescriptor
    response: ResponseSnapshot
    saved_at: float = field(default_factory=time.time)


class RequestStore:
    """Keyed store of :class:`StoredRecord` by request id.

    There is no eviction: the store grows with every request until
    :meth:`clear` is called.
    """

    def __init__(self) -> None:
        self._records: dict[str, StoredRecord] = {}

    def save(self, request_id: str, record: StoredRecord) -> None:
        self._records[request_id] = record

    def get(self, request_id: str) -> StoredRecord | None:
        return self._records.get(request_id)

    def get_all(self) -> dict[str, StoredRecord]:
        return dict(self._records)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._records

    def auto_save(self, exchange: CompletedRequest) -> None:
        """After-request hook that records every completed request."""
        self.save(
            exchange.request.id,
            StoredRecord(request=exchange.request, response=exchange.response),
        )
