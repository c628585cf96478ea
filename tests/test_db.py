import pytest

from stagebook.db import ensure_async_driver, migration_url


@pytest.mark.parametrize("url, expected", [
    ("postgresql://app:secret@db:5432/stagebook", "postgresql+asyncpg://app:secret@db:5432/stagebook"),
    ("postgresql+asyncpg://app:secret@db/stagebook", "postgresql+asyncpg://app:secret@db/stagebook"),
    ("sqlite:///tmp/stagebook.db", "sqlite+aiosqlite:///tmp/stagebook.db"),
])
def test_app_urls_get_an_async_driver(url, expected):
    assert ensure_async_driver(url) == expected


@pytest.mark.parametrize("url, expected", [
    ("postgresql+asyncpg://app:secret@db:5432/stagebook", "postgresql+psycopg2://app:secret@db:5432/stagebook"),
    ("sqlite+aiosqlite:///tmp/stagebook.db", "sqlite:///tmp/stagebook.db"),
    (None, None),
])
def test_migrations_use_a_sync_driver(url, expected):
    assert migration_url(url) == expected
