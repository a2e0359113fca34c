"""
Shared fixtures: scripted providers, account routers and activity builders.
"""

import asyncio
import itertools
from typing import Any, Dict, List, Optional

import pytest

from accounts import Account, AccountRouter, AccountsStore, ProviderKind, UsageLedger
from flow.events import Activity, ActivityPhase
from provider_service import Provider, StreamEvent, WorkspaceContext


class ScriptedProvider(Provider):
    """
    Provider that replays a fixed script.

    ``steps`` items are StreamEvents or ``(delay_seconds, StreamEvent)``.
    ``fail_with`` is raised after the script, ``stall_for`` sleeps after the
    script before ending, ``send_error`` is raised by ``send`` itself.
    """

    def __init__(
        self,
        steps: Optional[List[Any]] = None,
        provider_id: str = "scripted",
        fail_with: Optional[BaseException] = None,
        stall_for: Optional[float] = None,
        send_error: Optional[BaseException] = None,
        authenticated: bool = True,
    ):
        self.id = provider_id
        self.display_name = provider_id
        self.steps = list(steps or [])
        self.fail_with = fail_with
        self.stall_for = stall_for
        self.send_error = send_error
        self.authenticated = authenticated
        self.prompts: List[str] = []
        self.started = False
        self.finished = False

    def is_authenticated(self) -> bool:
        return self.authenticated

    async def send(self, prompt, context, images=None):
        self.prompts.append(prompt)
        if self.send_error is not None:
            raise self.send_error
        return self._stream()

    async def _stream(self):
        self.started = True
        for step in self.steps:
            delay, event = step if isinstance(step, tuple) else (0, step)
            if delay:
                await asyncio.sleep(delay)
            yield event
        if self.stall_for:
            await asyncio.sleep(self.stall_for)
        if self.fail_with is not None:
            raise self.fail_with
        self.finished = True


@pytest.fixture
def context():
    return WorkspaceContext(workspace_paths=["/tmp/project"], workspace_name="project")


@pytest.fixture
def make_router():
    """Build a router over ``n`` accounts of one family with increasing priority."""
    def _make(n: int, kind: ProviderKind = ProviderKind.CODEX):
        store = AccountsStore()
        accounts = []
        for i in range(n):
            account = Account(
                provider=kind,
                label=f"account-{i + 1}",
                profile_path=f"/profiles/{kind.value}/{i + 1}",
                priority=i,
                created_at=1000.0 + i,
            )
            store.add(account, secret=f"secret-{i + 1}")
            accounts.append(account)
        return AccountRouter(store, UsageLedger()), accounts
    return _make


_counter = itertools.count()


@pytest.fixture
def activity():
    """Activity builder with sensible defaults."""
    def _build(
        type: str = "agent",
        title: str = "Step",
        detail: Optional[str] = None,
        payload: Optional[Dict[str, str]] = None,
        timestamp: Optional[float] = None,
        is_running: bool = False,
        group_id: Optional[str] = None,
        phase: ActivityPhase = ActivityPhase.THINKING,
    ) -> Activity:
        return Activity(
            type=type,
            title=title,
            detail=detail,
            payload=dict(payload or {}),
            timestamp=1_700_000_000.0 + next(_counter) if timestamp is None else timestamp,
            phase=phase,
            is_running=is_running,
            group_id=group_id,
        )
    return _build


@pytest.fixture
def text_events():
    def _build(*chunks: str) -> List[StreamEvent]:
        return [StreamEvent.text_delta(c) for c in chunks]
    return _build
