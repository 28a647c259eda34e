from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from fakes import FakeStore, build_app


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def client(store: FakeStore) -> Iterator[TestClient]:
    with TestClient(build_app(store)) as c:
        yield c
