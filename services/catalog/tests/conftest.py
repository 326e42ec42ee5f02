import os

# the service reads its database URL at import time
os.environ["DATABASE_URL"] = "sqlite+pysqlite://"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import repo  # noqa: E402
from main import app  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    repo.Base.metadata.drop_all(repo.engine)
    repo.init_db()
    yield


@pytest.fixture
def api():
    return TestClient(app)


@pytest.fixture
def seeded(api):
    api.post("/items", json={"name": "Sofa", "base_price": "10000", "stock": 2})  # id 1
    api.post("/items", json={"name": "Lamp", "base_price": "90", "stock": 1})  # id 2
    api.post("/modifiers", json={"name": "Varnish", "kind": "PERCENTAGE", "value": "0.15"})  # id 1
    api.post("/modifiers", json={"name": "Cushion", "kind": "FIXED_ADD", "value": "500"})  # id 2
    return api
