"""Cascade deletion — Remote operation engine client.

Two layers:

  ``CascadeDeletionApiClient``
      Thin HTTP transport over ``httpx.AsyncClient``.  Attaches the bearer
      credential on every call, applies the overall timeout, retries
      transient network failures with exponential backoff and turns non-2xx
      responses into :class:`CascadeDeletionError`.

  ``CascadeDeletionClient``
      Caching layer used by the engine.  Previews are cached for
      ``preview_ttl`` seconds, active operation status and progress for
      ``progress_ttl`` seconds.  Every mutating call invalidates the entries
      it affects.

Usage::

    api = CascadeDeletionApiClient(base_url=settings.api.base_url, token_provider=identity.get_bearer_token)
    client = CascadeDeletionClient(api)
    impact = await client.preview_deletion("student", "stu-1")
    await client.close()
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable

import httpx

from deletion_guard.cascade.models import (
    BatchExecuteResponse,
    BatchPreviewResponse,
    BatchPreviewSummary,
    CancelResponse,
    DeletionImpact,
    DeletionOperation,
    DeletionProgress,
    ExecuteResponse,
    OperationHistory,
    PreviewResponse,
    SystemLimits,
)
from deletion_guard.config import ApiConfig
from deletion_guard.exceptions import (
    BatchPreviewFailedError,
    CancelFailedError,
    CascadeDeletionError,
    CascadeTimeoutError,
    ExecutionFailedError,
    MissingCredentialError,
    OperationNotFoundError,
)
from deletion_guard.logging import get_logger

log = get_logger(__name__)

_NOT_FOUND_CODES = {"HTTP_404", "OPERATION_NOT_FOUND"}


def _backoff_delay(base: float, attempt: int) -> float:
    """Exponential backoff: base, 2*base, 4*base, ..."""
    return base * (2**attempt)


class CascadeDeletionApiClient:
    """HTTP transport for the remote operation engine.

    Args:
        base_url:       Engine API root (e.g. ``http://localhost:3001/api``).
        token_provider: Callable returning the current bearer credential.
        timeout:        Overall timeout applied to every request, in seconds.
        retry_attempts: Total attempts for a request failing at the network level.
        retry_delay:    Base backoff delay; attempt N waits ``retry_delay * 2**N``.
        transport:      Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        *,
        base_url: str,
        token_provider: Callable[[], str | None],
        timeout: float = 60.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._timeout = timeout
        self._retry_attempts = max(1, retry_attempts)
        self._retry_delay = retry_delay
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        config: ApiConfig,
        token_provider: Callable[[], str | None],
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "CascadeDeletionApiClient":
        return cls(
            base_url=config.base_url,
            token_provider=token_provider,
            timeout=config.timeout_seconds,
            retry_attempts=config.retry_attempts,
            retry_delay=config.retry_delay_seconds,
            transport=transport,
        )

    def _get_http(self) -> httpx.AsyncClient:
        """Lazily create the async HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        token = self._token_provider()
        if not token:
            raise MissingCredentialError()
        headers = {"Authorization": f"Bearer {token}"}
        http = self._get_http()

        last_exc: httpx.TransportError | None = None
        for attempt in range(self._retry_attempts):
            try:
                resp = await http.request(method, path, json=body, params=params, headers=headers)
            except httpx.TransportError as exc:
                last_exc = exc
                if attempt < self._retry_attempts - 1:
                    delay = _backoff_delay(self._retry_delay, attempt)
                    log.warning(
                        "cascade_request_retry",
                        path=path,
                        error=str(exc) or exc.__class__.__name__,
                        attempt=attempt + 1,
                        delay=delay,
                    )
                    await asyncio.sleep(delay)
                continue
            return self._handle_response(resp)

        if isinstance(last_exc, httpx.TimeoutException):
            raise CascadeTimeoutError()
        raise CascadeDeletionError(
            f"Network error talking to the operation engine: {last_exc}",
            code="NETWORK_ERROR",
            recoverable=True,
        )

    @staticmethod
    def _handle_response(resp: httpx.Response) -> Any:
        content_type = resp.headers.get("content-type", "")
        data: Any
        if "application/json" in content_type:
            data = resp.json()
        else:
            data = resp.text

        if resp.is_success:
            return data

        payload = data if isinstance(data, dict) else {}
        raise CascadeDeletionError(
            payload.get("message")
            or payload.get("error")
            or f"Request failed with status {resp.status_code}",
            code=payload.get("code") or f"HTTP_{resp.status_code}",
            operation_id=payload.get("operationId"),
            phase=payload.get("phase"),
            recoverable=bool(payload.get("recoverable", False)),
        )

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def preview_cascade_deletion(
        self, entity_type: str, entity_id: str, options: dict[str, Any] | None = None
    ) -> PreviewResponse:
        data = await self._request(
            "POST",
            "/cascade-deletion/preview",
            body={"entityType": entity_type, "entityId": entity_id, "options": options},
        )
        return PreviewResponse.model_validate(data)

    async def execute_cascade_deletion(
        self,
        operation_id: str,
        options: dict[str, Any] | None = None,
        confirmation_token: str | None = None,
    ) -> ExecuteResponse:
        body: dict[str, Any] = {"operationId": operation_id, "options": options}
        if confirmation_token is not None:
            body["confirmationToken"] = confirmation_token
        data = await self._request("POST", "/cascade-deletion/execute", body=body)
        return ExecuteResponse.model_validate(data)

    async def cancel_operation(self, operation_id: str) -> CancelResponse:
        data = await self._request("POST", f"/cascade-deletion/operations/{operation_id}/cancel")
        return CancelResponse.model_validate(data)

    async def get_operation_status(self, operation_id: str) -> DeletionOperation:
        data = await self._request("GET", f"/cascade-deletion/operations/{operation_id}/status")
        return DeletionOperation.model_validate(data)

    async def get_operation_progress(self, operation_id: str) -> DeletionProgress:
        data = await self._request("GET", f"/cascade-deletion/operations/{operation_id}/progress")
        return DeletionProgress.model_validate(data)

    async def list_active_operations(self) -> list[DeletionOperation]:
        data = await self._request("GET", "/cascade-deletion/operations/active")
        return [DeletionOperation.model_validate(item) for item in data or []]

    async def get_operation_history(
        self, limit: int = 50, offset: int = 0, filters: dict[str, str] | None = None
    ) -> OperationHistory:
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        params.update({k: v for k, v in (filters or {}).items() if v is not None})
        data = await self._request("GET", "/cascade-deletion/operations/history", params=params)
        return OperationHistory.model_validate(data)

    async def batch_preview(self, entities: list[dict[str, str]]) -> BatchPreviewResponse:
        data = await self._request(
            "POST", "/cascade-deletion/batch/preview", body={"entities": entities}
        )
        return BatchPreviewResponse.model_validate(data)

    async def batch_execute(
        self, batch_id: str, options: dict[str, Any] | None = None
    ) -> BatchExecuteResponse:
        data = await self._request(
            "POST",
            "/cascade-deletion/batch/execute",
            body={"batchId": batch_id, "options": options},
        )
        return BatchExecuteResponse.model_validate(data)

    async def get_system_limits(self) -> SystemLimits:
        data = await self._request("GET", "/cascade-deletion/config/limits")
        return SystemLimits.model_validate(data)


def _preview_key(entity_type: str, entity_id: str, options: dict[str, Any] | None) -> str:
    canonical = json.dumps(options or {}, sort_keys=True, separators=(",", ":"), default=str)
    return f"{entity_type}:{entity_id}:{canonical}"


class CascadeDeletionClient:
    """Caching facade over :class:`CascadeDeletionApiClient`."""

    def __init__(
        self,
        api: CascadeDeletionApiClient,
        *,
        preview_ttl: float = 300.0,
        progress_ttl: float = 5.0,
        supported_entity_types: list[str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._api = api
        self._preview_ttl = preview_ttl
        self._progress_ttl = progress_ttl
        self._entity_types = {
            t.lower() for t in (supported_entity_types or ApiConfig().supported_entity_types)
        }
        self._clock = clock
        self._preview_cache: dict[str, tuple[float, PreviewResponse]] = {}
        self._preview_keys: dict[str, set[str]] = {}
        self._operation_cache: dict[str, tuple[float, DeletionOperation]] = {}
        self._progress_cache: dict[str, tuple[float, DeletionProgress]] = {}

    @classmethod
    def from_config(
        cls,
        config: ApiConfig,
        token_provider: Callable[[], str | None],
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> "CascadeDeletionClient":
        return cls(
            CascadeDeletionApiClient.from_config(config, token_provider, transport),
            preview_ttl=config.preview_cache_ttl_seconds,
            progress_ttl=config.progress_cache_ttl_seconds,
            supported_entity_types=config.supported_entity_types,
            clock=clock,
        )

    @property
    def api(self) -> CascadeDeletionApiClient:
        return self._api

    async def close(self) -> None:
        await self._api.close()

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    async def preview(
        self, entity_type: str, entity_id: str, options: dict[str, Any] | None = None
    ) -> PreviewResponse:
        """Preview with caching; returns the full response including the operation id."""
        key = _preview_key(entity_type, entity_id, options)
        now = self._clock()
        self._evict_stale_previews(now)
        cached = self._preview_cache.get(key)
        if cached is not None:
            log.debug("cascade_preview_cache_hit", entity_type=entity_type, entity_id=entity_id)
            return cached[1]

        try:
            response = await self._api.preview_cascade_deletion(entity_type, entity_id, options)
        except CascadeDeletionError:
            raise
        except Exception as exc:
            raise CascadeDeletionError(
                f"Failed to preview deletion: {exc}", code="PREVIEW_FAILED"
            ) from exc

        self._preview_cache[key] = (now, response)
        self._preview_keys.setdefault(response.operation_id, set()).add(key)
        return response

    async def preview_deletion(
        self, entity_type: str, entity_id: str, options: dict[str, Any] | None = None
    ) -> DeletionImpact:
        response = await self.preview(entity_type, entity_id, options)
        return response.impact

    def _evict_stale_previews(self, now: float) -> None:
        stale = [k for k, (at, _) in self._preview_cache.items() if now - at >= self._preview_ttl]
        for key in stale:
            _, response = self._preview_cache.pop(key)
            keys = self._preview_keys.get(response.operation_id)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._preview_keys[response.operation_id]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_deletion(
        self,
        operation_id: str,
        options: dict[str, Any] | None = None,
        confirmation_token: str | None = None,
    ) -> str:
        try:
            response = await self._api.execute_cascade_deletion(
                operation_id, options, confirmation_token
            )
        except CascadeDeletionError:
            raise
        except Exception as exc:
            raise ExecutionFailedError(
                f"Failed to execute deletion: {exc}", operation_id=operation_id
            ) from exc

        self.clear_operation_cache(operation_id)
        for key in self._preview_keys.pop(operation_id, set()):
            self._preview_cache.pop(key, None)
        log.info("cascade_deletion_started", operation_id=response.operation_id)
        return response.operation_id

    async def cancel_operation(self, operation_id: str) -> bool:
        try:
            response = await self._api.cancel_operation(operation_id)
        except CascadeDeletionError:
            raise
        except Exception as exc:
            raise CancelFailedError(
                f"Failed to cancel operation: {exc}", operation_id=operation_id
            ) from exc

        if response.success:
            self.clear_operation_cache(operation_id)
        return response.success

    async def retry_operation(self, operation_id: str) -> str:
        """Re-preview and re-execute a failed operation.  Returns the new operation id."""
        operation = await self.get_operation_status(operation_id, use_cache=False)
        if operation is None:
            raise OperationNotFoundError("Operation not found", operation_id=operation_id)
        if operation.status.value != "failed":
            raise CascadeDeletionError(
                "Only failed operations can be retried",
                code="INVALID_RETRY",
                operation_id=operation_id,
            )
        preview = await self._api.preview_cascade_deletion(
            operation.entity_type, operation.entity_id
        )
        return await self.execute_deletion(preview.operation_id)

    # ------------------------------------------------------------------
    # Status / progress
    # ------------------------------------------------------------------

    async def get_progress(
        self, operation_id: str, use_cache: bool = True
    ) -> DeletionProgress | None:
        now = self._clock()
        cached = self._progress_cache.get(operation_id)
        if use_cache and cached is not None and now - cached[0] < self._progress_ttl:
            return cached[1]

        try:
            progress = await self._api.get_operation_progress(operation_id)
        except CascadeDeletionError as exc:
            if exc.code in _NOT_FOUND_CODES:
                self._progress_cache.pop(operation_id, None)
                return None
            raise
        self._progress_cache[operation_id] = (now, progress)
        return progress

    async def get_operation_status(
        self, operation_id: str, use_cache: bool = True
    ) -> DeletionOperation | None:
        now = self._clock()
        cached = self._operation_cache.get(operation_id)
        if use_cache and cached is not None:
            fetched_at, operation = cached
            if not operation.status.is_active or now - fetched_at < self._progress_ttl:
                return operation

        try:
            operation = await self._api.get_operation_status(operation_id)
        except CascadeDeletionError as exc:
            if exc.code in _NOT_FOUND_CODES:
                self._operation_cache.pop(operation_id, None)
                return None
            raise
        self._operation_cache[operation_id] = (now, operation)
        return operation

    async def get_active_operations(self) -> list[DeletionOperation]:
        try:
            operations = await self._api.list_active_operations()
        except CascadeDeletionError:
            raise
        except Exception as exc:
            raise CascadeDeletionError(
                f"Failed to fetch active operations: {exc}", code="FETCH_ACTIVE_FAILED"
            ) from exc
        now = self._clock()
        for operation in operations:
            self._operation_cache[operation.id] = (now, operation)
        return operations

    async def get_operation_history(
        self, limit: int = 50, offset: int = 0, filters: dict[str, str] | None = None
    ) -> OperationHistory:
        return await self._api.get_operation_history(limit, offset, filters)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def preview_batch(self, entities: list[dict[str, str]]) -> BatchPreviewSummary:
        try:
            response = await self._api.batch_preview(entities)
        except CascadeDeletionError:
            raise
        except Exception as exc:
            raise BatchPreviewFailedError(f"Failed to preview batch deletion: {exc}") from exc

        previews = [p.impact for p in response.previews]
        return BatchPreviewSummary(
            batch_id=response.batch_id,
            previews=previews,
            total_affected=sum(p.total_affected_records for p in previews),
            has_warnings=any(p.warnings for p in previews),
            has_errors=any(not p.can_proceed for p in previews),
        )

    async def execute_batch(
        self, batch_id: str, options: dict[str, Any] | None = None
    ) -> BatchExecuteResponse:
        return await self._api.batch_execute(batch_id, options)

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    async def get_system_limits(self) -> SystemLimits:
        return await self._api.get_system_limits()

    def validate_entity_for_deletion(self, entity_type: str, entity_id: str) -> bool:
        if not entity_type or not entity_id:
            return False
        return entity_type.lower() in self._entity_types

    def clear_cache(self) -> None:
        self._operation_cache.clear()
        self._progress_cache.clear()
        self._preview_cache.clear()
        self._preview_keys.clear()

    def clear_operation_cache(self, operation_id: str) -> None:
        self._operation_cache.pop(operation_id, None)
        self._progress_cache.pop(operation_id, None)
