"""Shared pytest fixtures for the deletion-guard test suite."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from deletion_guard.cascade.client import CascadeDeletionClient
from deletion_guard.config import ApiConfig, Settings, override_settings
from deletion_guard.events.bus import MemoryEventBus
from deletion_guard.security.activity import ActivityRecorder
from deletion_guard.security.audit import AuditLogger
from deletion_guard.security.identity import CallerIdentity, StaticIdentityProvider
from deletion_guard.security.manager import DeletionSecurityService


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced clock.  Starts at local noon so after-hours rules stay quiet."""

    def __init__(self, start: float | None = None) -> None:
        self.now = start if start is not None else datetime(2026, 3, 10, 12, 0, 0).timestamp()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    settings = Settings(
        api={"base_url": "http://engine.test/api", "retry_delay_seconds": 0},
        batch={"progress_delay_seconds": 0},
        logging={"level": "debug", "format": "console", "audit_file": None},
    )
    override_settings(settings)
    return settings


# ---------------------------------------------------------------------------
# Audit / activity
# ---------------------------------------------------------------------------


@pytest.fixture
def bus() -> MemoryEventBus:
    return MemoryEventBus()


@pytest.fixture
def audit(bus: MemoryEventBus) -> AuditLogger:
    return AuditLogger(bus=bus)


@pytest.fixture
def recorder(audit: AuditLogger, clock: FakeClock) -> ActivityRecorder:
    recorder = ActivityRecorder(audit, capacity=100, device_fingerprint="test-device", clock=clock)
    recorder.bind_actor("admin-1")
    return recorder


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


@pytest.fixture
def admin_identity() -> CallerIdentity:
    return CallerIdentity(
        user_id="admin-1",
        role="admin",
        permissions=frozenset({"delete_student", "bulk_operations"}),
    )


@pytest.fixture
def standard_identity() -> CallerIdentity:
    return CallerIdentity(
        user_id="teacher-1",
        role="teacher",
        permissions=frozenset({"delete_student"}),
        accessible_entity_ids=frozenset({"stu-1", "stu-2"}),
    )


@pytest.fixture
def super_admin_identity() -> CallerIdentity:
    return CallerIdentity(
        user_id="root-1",
        role="super_admin",
        permissions=frozenset({"delete_student", "bulk_operations"}),
    )


# ---------------------------------------------------------------------------
# Remote operation engine
# ---------------------------------------------------------------------------


class FakeEngine:
    """In-memory stand-in for the remote operation engine behind ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.blocked: set[str] = set()
        self.failing_ops: set[str] = set()
        self.operations: dict[str, dict[str, Any]] = {}
        self.progress: dict[str, dict[str, Any]] = {}
        self.cancel_success = True
        self.failing_cancel = False
        self.limits = {
            "maxConcurrentOperations": 3,
            "maxDepth": 5,
            "maxBatchSize": 50,
            "supportedEntityTypes": ["student", "teacher"],
        }

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def calls(self, method: str, suffix: str) -> int:
        return sum(
            1 for r in self.requests if r.method == method and r.url.path.endswith(suffix)
        )

    def executed(self) -> list[str]:
        return [
            json.loads(r.content)["operationId"]
            for r in self.requests
            if r.url.path.endswith("/execute")
        ]

    def impact(self, entity_id: str) -> dict[str, Any]:
        return {
            "canProceed": entity_id not in self.blocked,
            "riskLevel": "low",
            "totalAffectedRecords": 3,
            "warnings": [],
            "errors": [] if entity_id not in self.blocked else ["has active dependencies"],
            "entityId": entity_id,
        }

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = request.url.path.split("/cascade-deletion", 1)[1]
        body = json.loads(request.content) if request.content else {}

        if route == "/preview":
            entity_id = body["entityId"]
            return httpx.Response(
                200, json={"impact": self.impact(entity_id), "operationId": f"op-{entity_id}"}
            )
        if route == "/execute":
            op_id = body["operationId"]
            if op_id in self.failing_ops:
                return httpx.Response(
                    500, json={"code": "EXECUTION_FAILED", "message": f"{op_id} failed"}
                )
            return httpx.Response(200, json={"operationId": op_id, "status": "started"})
        if route == "/operations/active":
            active = [
                op for op in self.operations.values() if op["status"] in ("pending", "running")
            ]
            return httpx.Response(200, json=active)
        if route == "/operations/history":
            ops = list(self.operations.values())
            return httpx.Response(200, json={"operations": ops, "totalCount": len(ops)})
        if route.startswith("/operations/"):
            _, _, op_id, action = route.split("/")
            if action == "cancel":
                if self.failing_cancel:
                    return httpx.Response(500, json={"message": "cancel crashed"})
                return httpx.Response(200, json={"success": self.cancel_success, "message": ""})
            store = self.operations if action == "status" else self.progress
            if op_id not in store:
                return httpx.Response(404, json={"message": "Operation not found"})
            return httpx.Response(200, json=store[op_id])
        if route == "/batch/preview":
            previews = [
                {"impact": self.impact(e["entityId"]), "operationId": f"op-{e['entityId']}"}
                for e in body["entities"]
            ]
            return httpx.Response(200, json={"batchId": "batch-1", "previews": previews})
        if route == "/batch/execute":
            return httpx.Response(
                200, json={"batchId": body["batchId"], "operationIds": ["op-a", "op-b"]}
            )
        if route == "/config/limits":
            return httpx.Response(200, json=self.limits)
        return httpx.Response(404, json={"message": "no route"})


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest_asyncio.fixture
async def client(engine: FakeEngine, clock: FakeClock) -> AsyncGenerator[CascadeDeletionClient, None]:
    client = CascadeDeletionClient.from_config(
        ApiConfig(base_url="http://engine.test/api", retry_delay_seconds=0),
        lambda: "test-token",
        transport=engine.transport(),
        clock=clock,
    )
    yield client
    await client.close()


@pytest.fixture
def admin_provider(admin_identity: CallerIdentity) -> StaticIdentityProvider:
    return StaticIdentityProvider(admin_identity, token="test-token", password="s3cret")


@pytest_asyncio.fixture
async def service(
    test_settings: Settings,
    admin_provider: StaticIdentityProvider,
    audit: AuditLogger,
    engine: FakeEngine,
    clock: FakeClock,
) -> AsyncGenerator[DeletionSecurityService, None]:
    svc = DeletionSecurityService(
        identity=admin_provider,
        settings=test_settings,
        audit=audit,
        transport=engine.transport(),
        clock=clock,
    )
    yield svc
    await svc.stop()
