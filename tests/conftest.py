from __future__ import annotations

import pytest

from gatekeeper.audit.logger import AuditLogger
from gatekeeper.dispatcher import CommandDispatcher, CommandRegistry
from gatekeeper.gate import AuthorizationGate
from gatekeeper.testing.fakes import FakeAuditStream, FakeClock, InMemoryAuditRepository, OWNER_ID


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repo() -> InMemoryAuditRepository:
    return InMemoryAuditRepository()


@pytest.fixture
def stream() -> FakeAuditStream:
    return FakeAuditStream()


@pytest.fixture
def audit(repo, stream, clock) -> AuditLogger:
    return AuditLogger(repo, stream=stream, clock=clock, system_id="900")


@pytest.fixture
def gate(clock) -> AuthorizationGate:
    return AuthorizationGate(owner_ids=frozenset({OWNER_ID}), clock=clock)


@pytest.fixture
def dispatcher(gate, audit) -> CommandDispatcher:
    return CommandDispatcher(gate, audit, CommandRegistry())
