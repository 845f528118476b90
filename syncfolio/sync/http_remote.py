"""REST document-store backend using httpx."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from ..errors import (
    PartialBulkReplaceError,
    RemoteError,
    RemoteReadError,
    RemoteReadTimeoutError,
    RemoteTimeoutError,
    RemoteWriteError,
)
from ..records.model import Record
from .remote import (
    OrderCallback,
    RemoteSyncAdapter,
    Scope,
    SnapshotCallback,
    Subscription,
    sanitize_for_remote,
)

logger = logging.getLogger(__name__)

# Longest wait between watch polls after repeated failures
MAX_POLL_BACKOFF_SECONDS = 300.0

_NO_SNAPSHOT = object()


def _describe_status(status_code: int) -> str:
    if status_code in (401, 403):
        return "permission denied"
    if status_code == 429:
        return "quota exceeded"
    if status_code >= 500:
        return "server error"
    return "request rejected"


class HttpRemote(RemoteSyncAdapter):
    """Remote adapter for a REST document store.

    Documents live under ``/v1/users/<uid>/<collection>/<id>``. Batched
    writes are posted to ``/v1/users/<uid>/<collection>:batch`` and applied
    atomically by the server. Change streams are delivered by polling.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        poll_interval: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the adapter.

        Args:
            base_url: Base URL of the document store (e.g., "http://localhost:8787").
            timeout: Request timeout in seconds.
            poll_interval: Seconds between watch polls.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._poll_tasks: set[asyncio.Task] = set()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Stop all pollers and close the HTTP client."""
        for task in list(self._poll_tasks):
            task.cancel()
        if self._poll_tasks:
            await asyncio.gather(*self._poll_tasks, return_exceptions=True)
        self._poll_tasks.clear()

        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _headers(scope: Scope) -> dict[str, str]:
        if scope.token:
            return {"Authorization": f"Bearer {scope.token}"}
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        scope: Scope,
        error_cls: type[RemoteError],
        json_data: Any = None,
        allow_404: bool = False,
    ) -> httpx.Response | None:
        """Send one request and map failures to typed errors.

        Returns:
            The response, or None for a tolerated 404.
        """
        client = await self._get_client()
        action = f"{method} {path}"

        try:
            response = await client.request(
                method, f"/v1/{path}", json=json_data, headers=self._headers(scope)
            )
        except httpx.TimeoutException as e:
            timeout_cls = (
                RemoteTimeoutError
                if issubclass(error_cls, RemoteWriteError)
                else RemoteReadTimeoutError
            )
            raise timeout_cls(
                f"Remote store timed out: {action}",
                details={"action": action},
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise error_cls(
                f"Remote store unreachable: {e}",
                details={"action": action},
                cause=e,
            ) from e

        if response.status_code == 404 and allow_404:
            return None

        if response.status_code >= 400:
            raise error_cls(
                f"Remote store {_describe_status(response.status_code)} "
                f"(HTTP {response.status_code}) for {action}",
                details={
                    "action": action,
                    "status_code": response.status_code,
                    "body": response.text[:500],
                },
            )

        return response

    async def fetch_all(self, scope: Scope) -> list[Record]:
        response = await self._request("GET", scope.records_path, scope, RemoteReadError)
        documents = response.json().get("documents", [])
        logger.debug(f"Fetched {len(documents)} documents from {scope.records_path}")
        return documents

    async def put(self, scope: Scope, record: Record) -> None:
        await self._request(
            "PUT",
            f"{scope.records_path}/{record['id']}",
            scope,
            RemoteWriteError,
            json_data=sanitize_for_remote(record),
        )

    async def delete(self, scope: Scope, record_id: str) -> None:
        await self._request(
            "DELETE",
            f"{scope.records_path}/{record_id}",
            scope,
            RemoteWriteError,
            allow_404=True,
        )

    async def _commit_batch(self, scope: Scope, writes: list[dict[str, Any]]) -> None:
        if not writes:
            return
        await self._request(
            "POST",
            f"{scope.records_path}:batch",
            scope,
            RemoteWriteError,
            json_data={"writes": writes},
        )

    async def replace_all(self, scope: Scope, records: list[Record]) -> None:
        try:
            existing = await self.fetch_all(scope)
        except RemoteReadError as e:
            raise RemoteWriteError(
                f"Could not list documents to replace: {e}", cause=e
            ) from e

        await self._commit_batch(
            scope, [{"op": "delete", "id": doc["id"]} for doc in existing]
        )
        logger.info(f"Deleted {len(existing)} documents from {scope.records_path}")

        try:
            await self._commit_batch(
                scope,
                [
                    {"op": "set", "id": r["id"], "data": sanitize_for_remote(r)}
                    for r in records
                ],
            )
        except RemoteWriteError as e:
            raise PartialBulkReplaceError(
                f"Deleted {len(existing)} documents but writing "
                f"{len(records)} replacements failed: {e}",
                deleted_count=len(existing),
                details={"written": 0, "expected": len(records)},
                cause=e,
            ) from e

        logger.info(f"Wrote {len(records)} documents to {scope.records_path}")

    async def read_order(self, scope: Scope) -> list[str] | None:
        response = await self._request(
            "GET", scope.order_path, scope, RemoteReadError, allow_404=True
        )
        if response is None:
            return None
        order = response.json().get("order")
        return list(order) if isinstance(order, list) else None

    async def write_order(self, scope: Scope, order: list[str]) -> None:
        await self._request(
            "PUT",
            scope.order_path,
            scope,
            RemoteWriteError,
            json_data={"order": list(order)},
        )

    def _start_poller(
        self,
        name: str,
        fetch: Callable[[], Awaitable[Any]],
        on_change: Callable[[Any], None],
    ) -> Subscription:
        task = asyncio.create_task(self._poll_loop(name, fetch, on_change))
        self._poll_tasks.add(task)
        task.add_done_callback(self._poll_tasks.discard)
        return Subscription(task.cancel, name=name)

    async def _poll_loop(
        self,
        name: str,
        fetch: Callable[[], Awaitable[Any]],
        on_change: Callable[[Any], None],
    ) -> None:
        """Poll ``fetch`` and deliver a snapshot whenever it changes.

        The first successful poll is always delivered. Read failures are
        logged and retried with exponential backoff.
        """
        last: Any = _NO_SNAPSHOT
        failures = 0

        while True:
            try:
                snapshot = await fetch()
                failures = 0
                if snapshot != last:
                    last = snapshot
                    on_change(snapshot)
            except RemoteError as e:
                failures += 1
                logger.warning(f"Poll of {name} failed ({failures} in a row): {e}")
            except Exception as e:
                logger.error(f"Watch {name} error: {e}", exc_info=True)

            wait_time = self.poll_interval
            if failures > 0:
                wait_time = min(
                    self.poll_interval * (2 ** failures),
                    MAX_POLL_BACKOFF_SECONDS,
                )
            await asyncio.sleep(wait_time)

    def watch(self, scope: Scope, on_change: SnapshotCallback) -> Subscription:
        return self._start_poller(
            f"watch {scope.records_path}",
            lambda: self.fetch_all(scope),
            on_change,
        )

    def watch_order(self, scope: Scope, on_change: OrderCallback) -> Subscription:
        return self._start_poller(
            f"watch {scope.order_path}",
            lambda: self.read_order(scope),
            on_change,
        )
