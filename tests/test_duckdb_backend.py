"""Tests for the DuckDB primary backend."""

from datetime import datetime, timedelta, timezone

import pytest

from kairo.memory.schema import MemoryKind, MemoryRecord, RecordFilter, TimeRange

# Check if duckdb is available
try:
    import duckdb  # noqa: F401

    HAS_DUCKDB = True
except ImportError:
    HAS_DUCKDB = False

requires_duckdb = pytest.mark.skipif(not HAS_DUCKDB, reason="duckdb not installed")

T0 = datetime(2026, 2, 1, tzinfo=timezone.utc)


def make_record(record_id: str, minutes: int = 0, **kwargs) -> MemoryRecord:
    when = T0 + timedelta(minutes=minutes)
    fields = dict(
        id=record_id,
        agent_id="research",
        input=f"input {record_id}",
        output=f"output {record_id}",
        tags=["alpha", "beta"],
        metadata={"session": "s1"},
        created_at=when,
        last_accessed=when,
    )
    fields.update(kwargs)
    return MemoryRecord(**fields)


@pytest.fixture
def duckdb_backend(tmp_path):
    from kairo.memory.backends.duckdb_backend import DuckDBBackend

    return DuckDBBackend(tmp_path / "db" / "kairo.duckdb")


@requires_duckdb
class TestDuckDBBackend:
    """Tests for DuckDBBackend."""

    @pytest.mark.asyncio
    async def test_round_trip_fields(self, duckdb_backend):
        original = make_record("a", kind=MemoryKind.CORRECTION, user_id="u1", context="ctx", relevance=1.2)
        await duckdb_backend.insert(original)

        (loaded,) = await duckdb_backend.select(RecordFilter(agent_id="research"))
        assert loaded == original
        assert loaded.created_at.tzinfo is not None
        await duckdb_backend.close()

    @pytest.mark.asyncio
    async def test_select_filters_and_order(self, duckdb_backend):
        await duckdb_backend.insert(make_record("a", user_id="u1"))
        await duckdb_backend.insert(make_record("b", minutes=10, user_id="u2", kind=MemoryKind.GOAL))
        await duckdb_backend.insert(make_record("c", minutes=20, user_id="u1"))

        everything = await duckdb_backend.select(RecordFilter(agent_id="research"))
        assert [r.id for r in everything] == ["c", "b", "a"]

        by_user = await duckdb_backend.select(RecordFilter(agent_id="research", user_id="u1"))
        assert [r.id for r in by_user] == ["c", "a"]

        by_kind = await duckdb_backend.select(RecordFilter(agent_id="research", kinds=[MemoryKind.GOAL]))
        assert [r.id for r in by_kind] == ["b"]

        assert await duckdb_backend.select(RecordFilter(agent_id="research", kinds=[])) == []

        window = TimeRange(start=T0 + timedelta(minutes=5), end=T0 + timedelta(minutes=25))
        by_time = await duckdb_backend.select(RecordFilter(agent_id="research", time_range=window, limit=1))
        assert [r.id for r in by_time] == ["c"]
        await duckdb_backend.close()

    @pytest.mark.asyncio
    async def test_touch_delete_count(self, duckdb_backend):
        await duckdb_backend.insert(make_record("a"))
        await duckdb_backend.insert(make_record("b"))
        await duckdb_backend.insert(make_record("c", agent_id="creative"))

        later = T0 + timedelta(days=1)
        assert await duckdb_backend.touch("research", ["a", "c"], later) == 1
        assert await duckdb_backend.touch("research", ["a"], later) == 0

        assert await duckdb_backend.count() == 3
        assert await duckdb_backend.count("research") == 2

        assert await duckdb_backend.delete("research", ["a", "c"]) == 1
        assert await duckdb_backend.delete("research", []) == 0
        assert await duckdb_backend.count("research") == 1
        await duckdb_backend.close()


class TestDuckDBImport:
    def test_missing_duckdb_gives_install_hint(self, tmp_path, monkeypatch):
        import builtins

        from kairo.memory.backends.duckdb_backend import DuckDBBackend

        real_import = builtins.__import__

        def fake_import(name, *args, **kwargs):
            if name == "duckdb":
                raise ImportError("No module named 'duckdb'")
            return real_import(name, *args, **kwargs)

        monkeypatch.setattr(builtins, "__import__", fake_import)
        with pytest.raises(ImportError, match="pip install duckdb"):
            DuckDBBackend(tmp_path / "kairo.duckdb")
