"""DuckDB-backed key-value store."""

from pathlib import Path

import pytest

from data.duckdb_store import DuckDBKeyValueStore, get_duckdb
from errors import StorageError
from repository import CredentialCache


@pytest.mark.asyncio
async def test_values_survive_reopen(tmp_path: Path) -> None:
    db_path = tmp_path / "chatline.duckdb"
    store = DuckDBKeyValueStore(db_path)
    await store.set("last_email", "a@x.com")
    await store.set("last_email", "b@x.com")

    reopened = DuckDBKeyValueStore(db_path)
    assert await reopened.get("last_email") == "b@x.com"
    assert await reopened.get("missing") is None


@pytest.mark.asyncio
async def test_remove_and_clear(tmp_path: Path) -> None:
    store = DuckDBKeyValueStore(tmp_path / "kv.duckdb")
    await store.set("a", "1")
    await store.set("b", "2")

    await store.remove("a")
    assert store.keys() == ["b"]

    store.clear()
    assert store.keys() == []


@pytest.mark.asyncio
async def test_credential_cache_on_duckdb(tmp_path: Path) -> None:
    cache = CredentialCache(DuckDBKeyValueStore(tmp_path / "kv.duckdb"))
    await cache.save("a@x.com", "pw", "Ana")

    record = await CredentialCache(DuckDBKeyValueStore(tmp_path / "kv.duckdb")).load()
    assert record.has_credentials
    assert record.cached_display_name == "Ana"


def test_unopenable_file_raises_storage_error(tmp_path: Path) -> None:
    not_a_db = tmp_path / "garbage.duckdb"
    not_a_db.write_text("this is not a database")
    with pytest.raises(StorageError):
        DuckDBKeyValueStore(not_a_db)


def test_get_duckdb_reuses_instance(tmp_path: Path) -> None:
    first = get_duckdb(tmp_path / "one.duckdb")
    assert get_duckdb() is first
    assert get_duckdb(tmp_path / "one.duckdb") is first
    assert get_duckdb(tmp_path / "two.duckdb") is not first
