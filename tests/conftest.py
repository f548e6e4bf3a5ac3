import pytest


@pytest.fixture
def snapshot_date() -> str:
    return "2023-08-18"
