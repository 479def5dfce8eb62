import pytest
from extdb.sql import clear_statement_cache


@pytest.fixture(autouse=True)
def clear_caches():
    """Clear the parsed statement cache around each test."""
    clear_statement_cache()
    yield
    clear_statement_cache()


pytest_plugins = [
    'tests.fixtures.mocks',
    'tests.fixtures.sqlite',
]
