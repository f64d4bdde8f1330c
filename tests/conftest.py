import pytest

from process_engine.engine import Engine
from process_engine.processes import load_registries
from process_engine.store import InMemoryStore
from process_engine.tools import build_demo_tools

TEAM = [
    {"id": "tm-1", "name": "Alex Rivera", "available": True},
    {"id": "tm-2", "name": "Sam Patel", "available": False},
]

LEAD = {
    "name": "John Doe",
    "email": "john@example.com",
    "phone": "555-0100",
    "request_title": "Lawn care quote",
}


@pytest.fixture
def store():
    return InMemoryStore({"team_members": TEAM})


@pytest.fixture
def tools(store):
    return build_demo_tools(store)


@pytest.fixture
def engine(store, tools):
    contracts, patterns = load_registries()
    return Engine(contracts, patterns, tools=tools, store=store)


@pytest.fixture
def lead():
    return dict(LEAD)
