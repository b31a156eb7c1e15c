"""テスト共通フィクスチャ"""

import sqlite3

import pytest

from contract_dataset.core.database import create_schema
from tests.helpers import FakeClock


@pytest.fixture
def conn(tmp_path):
    connection = sqlite3.connect(tmp_path / "contracts.db")
    connection.row_factory = sqlite3.Row
    create_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def fake_clock():
    return FakeClock()
