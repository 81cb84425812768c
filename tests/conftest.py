"""
Shared pytest fixtures for larder tests.

Provides in-memory stores and scripted AI backends so no test touches a
real model or network.
"""

import asyncio
from pathlib import Path
from typing import Optional

import pytest

from larder.api import Workspace
from larder.config import StoreConfig
from larder.entity_types import TASKS, TRANSACTIONS
from larder.providers.base import Attachment
from larder.record_store import MemoryRecordStore
from larder.repository import EntityRepository


class ScriptedBackend:
    """
    Async backend whose answers and timing the test controls.

    ``responses`` maps prompt -> text (or an exception to raise).
    ``hold(prompt)`` makes that prompt wait until ``release(prompt)``,
    so tests can choose the order in which overlapping requests settle.
    """

    def __init__(self, responses: Optional[dict] = None):
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, Optional[Attachment]]] = []
        self._gates: dict[str, asyncio.Event] = {}

    def hold(self, prompt: str) -> None:
        self._gates[prompt] = asyncio.Event()

    def release(self, prompt: str) -> None:
        self._gates[prompt].set()

    async def agenerate(self, prompt: str, attachment: Optional[Attachment] = None) -> str:
        self.calls.append((prompt, attachment))
        gate = self._gates.get(prompt)
        if gate is not None:
            await gate.wait()
        outcome = self.responses.get(prompt, f"echo: {prompt}")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def generate(self, prompt: str, attachment: Optional[Attachment] = None) -> str:
        raise AssertionError("agenerate should be preferred")


class EchoBackend:
    """Synchronous backend: upper-cases the prompt."""

    def __init__(self):
        self.calls = []

    def generate(self, prompt: str, attachment: Optional[Attachment] = None) -> str:
        self.calls.append((prompt, attachment))
        return prompt.upper()


class StaticIdentity:
    """Identity provider with a fixed user."""

    def __init__(self, user: Optional[dict]):
        self._user = user
        self.logged_out = False

    @property
    def current_user(self) -> Optional[dict]:
        return self._user

    def logout(self) -> None:
        self.logged_out = True
        self._user = None


@pytest.fixture
def memory_store():
    """Fresh in-memory record store."""
    return MemoryRecordStore()


@pytest.fixture
def tasks(memory_store):
    """Task repository over the in-memory store."""
    return EntityRepository(memory_store, TASKS)


@pytest.fixture
def transactions(memory_store):
    """Transaction repository over the in-memory store."""
    return EntityRepository(memory_store, TRANSACTIONS)


@pytest.fixture
def scripted_backend():
    return ScriptedBackend()


@pytest.fixture
def workspace(tmp_path: Path, scripted_backend):
    """Workspace over an in-memory store with a scripted backend."""
    config = StoreConfig(path=tmp_path, backend="memory")
    ws = Workspace(config=config, record_store=MemoryRecordStore(), backend=scripted_backend)
    yield ws
    ws.close()
