"""Shared pytest fixtures.

The service layer talks to MongoDB through motor and to the model through the
Agents SDK ``Runner``. Tests replace both: ``FakeCollection`` is a minimal
in-memory stand-in for ``AsyncIOMotorCollection`` covering the calls the
services make, and ``agent_stub`` patches ``Runner.run`` so each agent returns
a scripted reply (or raises) without any network access.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any

import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure

from utils import assistant_agent


def _matches(doc: dict[str, Any], flt: dict[str, Any]) -> bool:
    return all(doc.get(key) == value for key, value in flt.items())


@dataclass
class _InsertOneResult:
    inserted_id: ObjectId


@dataclass
class _DeleteResult:
    deleted_count: int


@dataclass
class _UpdateResult:
    matched_count: int
    upserted_id: ObjectId | None


class _FakeCursor:
    def __init__(self, docs: list[dict[str, Any]]) -> None:
        self._docs = docs

    def sort(self, keys: list[tuple[str, int]]) -> _FakeCursor:
        # Apply keys from least to most significant; list.sort is stable.
        for key, direction in reversed(keys):
            self._docs.sort(key=lambda d: (d.get(key) is not None, d.get(key)), reverse=direction == -1)
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self._docs:
            yield doc


class _FakeChangeStream:
    """Replays queued change events; an exception instance in the queue is raised."""

    def __init__(self, events: list[Any]) -> None:
        self._events = events
        self.closed = False

    async def __aenter__(self) -> _FakeChangeStream:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.closed = True

    def __aiter__(self) -> _FakeChangeStream:
        return self

    async def __anext__(self) -> Any:
        if not self._events:
            raise StopAsyncIteration
        event = self._events.pop(0)
        if isinstance(event, BaseException):
            raise event
        return event


class FakeCollection:
    """In-memory subset of ``AsyncIOMotorCollection`` used by the services."""

    def __init__(self, name: str = "transactions") -> None:
        self.name = name
        self.docs: list[dict[str, Any]] = []
        # None mirrors a standalone mongod, which rejects $changeStream
        self.change_events: list[Any] | None = None
        self.streams: list[_FakeChangeStream] = []

    def find(self, flt: dict[str, Any] | None = None) -> _FakeCursor:
        flt = flt or {}
        return _FakeCursor([copy.deepcopy(d) for d in self.docs if _matches(d, flt)])

    async def find_one(self, flt: dict[str, Any]) -> dict[str, Any] | None:
        for doc in self.docs:
            if _matches(doc, flt):
                return copy.deepcopy(doc)
        return None

    async def insert_one(self, doc: dict[str, Any]) -> _InsertOneResult:
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        return _InsertOneResult(inserted_id=doc["_id"])

    async def delete_one(self, flt: dict[str, Any]) -> _DeleteResult:
        for i, doc in enumerate(self.docs):
            if _matches(doc, flt):
                del self.docs[i]
                return _DeleteResult(deleted_count=1)
        return _DeleteResult(deleted_count=0)

    async def update_one(self, flt: dict[str, Any], update: dict[str, Any], upsert: bool = False) -> _UpdateResult:
        for doc in self.docs:
            if _matches(doc, flt):
                doc.update(copy.deepcopy(update.get("$set", {})))
                return _UpdateResult(matched_count=1, upserted_id=None)
        if not upsert:
            return _UpdateResult(matched_count=0, upserted_id=None)
        new_doc = {**flt, **copy.deepcopy(update.get("$set", {})), "_id": ObjectId()}
        self.docs.append(new_doc)
        return _UpdateResult(matched_count=0, upserted_id=new_doc["_id"])

    def watch(self, *args: Any, **kwargs: Any) -> _FakeChangeStream:
        if self.change_events is None:
            raise OperationFailure("The $changeStream stage is only supported on replica sets")
        stream = _FakeChangeStream(self.change_events)
        self.streams.append(stream)
        return stream


class AgentStub:
    """Scripted replacement for ``agents.Runner.run``.

    ``replies`` maps an agent name to the text it returns, or to an exception
    instance that the call raises. Unscripted agents return an empty string.
    Every call's ``(agent_name, prompt)`` is recorded in ``calls``.
    """

    def __init__(self) -> None:
        self.replies: dict[str, Any] = {}
        self.calls: list[tuple[str, str]] = []

    async def run(self, agent, input, **kwargs):
        self.calls.append((agent.name, input))
        reply = self.replies.get(agent.name, "")
        if isinstance(reply, BaseException):
            raise reply

        class _Result:
            final_output = reply

        return _Result()


@pytest.fixture
def tx_collection() -> FakeCollection:
    return FakeCollection("transactions")


@pytest.fixture
def advice_collection() -> FakeCollection:
    return FakeCollection("advice")


@pytest.fixture
def agent_stub(monkeypatch: pytest.MonkeyPatch) -> AgentStub:
    stub = AgentStub()
    monkeypatch.setattr(assistant_agent.Runner, "run", staticmethod(stub.run))
    return stub
