"""
Tests for the storage adapters.

Covers:
- SQLiteAdapter: connect/close lifecycle, URL parsing, query/execute,
  RETURNING rows, REGEXP, transactions
- MemoryDocumentAdapter: filter matching, find options, update operators,
  upserts, findOneAnd* ops, distinct, aggregation, unique indexes,
  transactions
"""

import pytest

from ardea.adapters import DuplicateKeyError, MemoryDocumentAdapter, SQLiteAdapter
from ardea.adapters.memory import match_document, run_pipeline
from ardea.faults import DatabaseConnectionFault


# ============================================================================
# SQLite
# ============================================================================


class TestSQLiteAdapter:
    @pytest.mark.parametrize(
        "url,path",
        [
            ("sqlite:///:memory:", ":memory:"),
            ("sqlite:///data/app.db", "data/app.db"),
            ("sqlite://", ":memory:"),
        ],
    )
    def test_parse_url(self, url, path):
        assert SQLiteAdapter._parse_url(url) == path

    def test_capabilities(self):
        adapter = SQLiteAdapter()
        assert adapter.kind == "sql"
        assert adapter.name == "SQLite"
        assert adapter.capabilities.supports_returning

    @pytest.mark.asyncio
    async def test_lifecycle(self):
        adapter = SQLiteAdapter()
        assert not adapter.is_connected
        await adapter.connect()
        await adapter.connect()
        assert adapter.is_connected
        await adapter.close()
        assert not adapter.is_connected

    @pytest.mark.asyncio
    async def test_context_manager(self):
        async with SQLiteAdapter() as adapter:
            assert adapter.is_connected
        assert not adapter.is_connected

    @pytest.mark.asyncio
    async def test_unusable_path(self, tmp_path):
        adapter = SQLiteAdapter(f"sqlite:///{tmp_path}/missing/dir/app.db")
        with pytest.raises(DatabaseConnectionFault):
            await adapter.connect()

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        with pytest.raises(RuntimeError):
            await SQLiteAdapter().query("SELECT 1")

    @pytest.mark.asyncio
    async def test_execute_and_query(self, sqlite_adapter):
        await sqlite_adapter.execute_script("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT);")
        result = await sqlite_adapter.execute("INSERT INTO t (name) VALUES (?)", ["a"])
        assert result.inserted_id == 1
        assert result.affected == 1
        rows = await sqlite_adapter.query("SELECT * FROM t WHERE name = ?", ["a"])
        assert rows == [{"id": 1, "name": "a"}]

    @pytest.mark.asyncio
    async def test_returning_rows(self, sqlite_adapter):
        await sqlite_adapter.execute_script("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT);")
        result = await sqlite_adapter.execute("INSERT INTO t (name) VALUES (?) RETURNING *", ["b"])
        assert result.rows == [{"id": 1, "name": "b"}]

    @pytest.mark.asyncio
    async def test_regexp_function(self, sqlite_adapter):
        await sqlite_adapter.execute_script(
            "CREATE TABLE t (name TEXT); INSERT INTO t VALUES ('alpha'), ('beta'), (NULL);"
        )
        rows = await sqlite_adapter.query("SELECT name FROM t WHERE name REGEXP ?", ["^b"])
        assert rows == [{"name": "beta"}]

    @pytest.mark.asyncio
    async def test_transaction(self, sqlite_adapter):
        await sqlite_adapter.execute_script("CREATE TABLE t (name TEXT);")

        async def ok(adapter):
            await adapter.execute("INSERT INTO t VALUES (?)", ["kept"])

        async def fail(adapter):
            await adapter.execute("INSERT INTO t VALUES (?)", ["lost"])
            raise ValueError("abort")

        await sqlite_adapter.transaction(ok)
        with pytest.raises(ValueError):
            await sqlite_adapter.transaction(fail)
        assert await sqlite_adapter.query("SELECT name FROM t") == [{"name": "kept"}]


# ============================================================================
# Memory document store: matching
# ============================================================================


class TestMatchDocument:
    doc = {"name": "Ann", "age": 30, "tags": ["a", "b"], "profile": {"city": "Oslo"}, "note": None}

    @pytest.mark.parametrize(
        "flt,expected",
        [
            ({}, True),
            ({"name": "Ann"}, True),
            ({"name": "Bob"}, False),
            ({"age": {"$gt": 20, "$lte": 30}}, True),
            ({"age": {"$lt": 30}}, False),
            ({"age": {"$in": [1, 30]}}, True),
            ({"age": {"$nin": [30]}}, False),
            ({"age": {"$ne": 31}}, True),
            ({"tags": "b"}, True),
            ({"profile.city": "Oslo"}, True),
            ({"missing": {"$exists": False}}, True),
            ({"note": {"$exists": True}}, True),
            ({"missing": None}, True),
            ({"name": {"$regex": "^an", "$options": "i"}}, True),
            ({"name": {"$regex": "^an"}}, False),
            ({"$and": [{"age": 30}, {"name": "Ann"}]}, True),
            ({"age": {"$not": {"$gt": 40}}}, True),
            ({"age": {"$gt": "x"}}, False),
        ],
    )
    def test_filters(self, flt, expected):
        assert match_document(self.doc, flt) is expected

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            match_document(self.doc, {"age": {"$near": 1}})


# ============================================================================
# Memory document store: operations
# ============================================================================


class TestMemoryDocumentAdapter:
    @pytest.mark.asyncio
    async def test_lifecycle(self):
        adapter = MemoryDocumentAdapter()
        await adapter.connect({"database": "app"})
        assert adapter.is_connected
        assert adapter.database == "app"
        assert adapter.kind == "document"
        await adapter.close()
        assert not adapter.is_connected

    @pytest.mark.asyncio
    async def test_insert_generates_ids(self, memory_adapter):
        result = await memory_adapter.execute("insert", "users", {"name": "Ann"})
        assert isinstance(result.inserted_id, str)
        docs = await memory_adapter.query("users", {"_id": result.inserted_id})
        assert docs[0]["name"] == "Ann"

    @pytest.mark.asyncio
    async def test_query_options(self, memory_adapter):
        await memory_adapter.execute("insertMany", "users", [
            {"name": "a", "age": 3},
            {"name": "b", "age": 1},
            {"name": "c", "age": 2},
        ])
        docs = await memory_adapter.query(
            "users", {}, {"sort": {"age": -1}, "skip": 1, "limit": 1, "projection": {"name": 1}}
        )
        assert len(docs) == 1
        assert docs[0]["name"] == "c"
        assert set(docs[0]) == {"_id", "name"}

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, memory_adapter):
        await memory_adapter.execute("insert", "users", {"name": "a", "tags": []})
        doc = (await memory_adapter.query("users", {}))[0]
        doc["tags"].append("mutated")
        assert (await memory_adapter.query("users", {}))[0]["tags"] == []

    @pytest.mark.asyncio
    async def test_update_operators(self, memory_adapter):
        await memory_adapter.execute("insertMany", "users", [{"n": 1, "x": 1}, {"n": 2, "x": 1}])
        result = await memory_adapter.execute("updateMany", "users", {
            "filter": {},
            "update": {"$inc": {"n": 10}, "$unset": {"x": ""}, "$set": {"p.q": 1}},
        })
        assert result.affected == 2
        docs = await memory_adapter.query("users", {}, {"sort": {"n": 1}})
        assert [d["n"] for d in docs] == [11, 12]
        assert all("x" not in d and d["p"] == {"q": 1} for d in docs)

    @pytest.mark.asyncio
    async def test_upsert_seeds_from_filter(self, memory_adapter):
        result = await memory_adapter.execute("findOneAndUpdate", "users", {
            "filter": {"email": "e@x.io", "age": {"$gt": 1}},
            "update": {"$set": {"name": "E"}, "$setOnInsert": {"role": "member"}},
            "options": {"upsert": True, "returnDocument": "after"},
        })
        doc = result.value
        assert doc["email"] == "e@x.io"
        assert doc["name"] == "E"
        assert doc["role"] == "member"
        assert "age" not in doc

    @pytest.mark.asyncio
    async def test_find_one_and_update_before_after(self, memory_adapter):
        await memory_adapter.execute("insert", "c", {"v": 1})
        before = await memory_adapter.execute("findOneAndUpdate", "c", {"filter": {}, "update": {"$inc": {"v": 1}}})
        assert before.value["v"] == 1
        after = await memory_adapter.execute(
            "findOneAndUpdate", "c", {"filter": {}, "update": {"$inc": {"v": 1}}, "options": {"returnDocument": "after"}}
        )
        assert after.value["v"] == 3

    @pytest.mark.asyncio
    async def test_find_one_and_replace_and_delete(self, memory_adapter):
        inserted = await memory_adapter.execute("insert", "c", {"a": 1, "b": 2})
        replaced = await memory_adapter.execute("findOneAndReplace", "c", {
            "filter": {"a": 1},
            "replacement": {"a": 5},
            "options": {"returnDocument": "after"},
        })
        assert replaced.value == {"_id": inserted.inserted_id, "a": 5}
        deleted = await memory_adapter.execute("findOneAndDelete", "c", {"filter": {"a": 5}})
        assert deleted.value["a"] == 5
        assert await memory_adapter.query("c", {}) == []

    @pytest.mark.asyncio
    async def test_count_and_distinct(self, memory_adapter):
        await memory_adapter.execute("insertMany", "c", [{"t": ["x", "y"]}, {"t": ["y"]}, {"t": "z"}])
        count = await memory_adapter.execute("count", "c", {"filter": {"t": "y"}})
        assert count.value == 2
        distinct = await memory_adapter.execute("distinct", "c", {"field": "t"})
        assert distinct.value == ["x", "y", "z"]

    @pytest.mark.asyncio
    async def test_unique_index(self, memory_adapter):
        await memory_adapter.execute("createIndex", "c", {"keys": {"k": 1}, "options": {"unique": True, "name": "k_1"}})
        await memory_adapter.execute("insert", "c", {"k": 1})
        with pytest.raises(DuplicateKeyError):
            await memory_adapter.execute("insert", "c", {"k": 1})
        listed = await memory_adapter.execute("listIndexes", "c", {})
        assert [idx["name"] for idx in listed.value] == ["_id_", "k_1"]
        with pytest.raises(ValueError):
            await memory_adapter.execute("dropIndex", "c", {"name": "_id_"})
        await memory_adapter.execute("dropIndex", "c", {"name": "k_1"})
        await memory_adapter.execute("insert", "c", {"k": 1})

    @pytest.mark.asyncio
    async def test_unsupported_operation(self, memory_adapter):
        with pytest.raises(ValueError):
            await memory_adapter.execute("mapReduce", "c", {})

    @pytest.mark.asyncio
    async def test_transaction_rolls_back(self, memory_adapter):
        await memory_adapter.execute("insert", "c", {"v": "kept"})

        async def fail(adapter):
            await adapter.execute("insert", "c", {"v": "lost"})
            raise ValueError("abort")

        with pytest.raises(ValueError):
            await memory_adapter.transaction(fail)
        assert [d["v"] for d in await memory_adapter.query("c", {})] == ["kept"]


class TestPipeline:
    docs = [
        {"k": "a", "v": 1},
        {"k": "b", "v": 5},
        {"k": "a", "v": 3},
    ]

    def test_group_sort_limit(self):
        rows = run_pipeline(self.docs, [
            {"$group": {"_id": "$k", "sum": {"$sum": "$v"}, "max": {"$max": "$v"}}},
            {"$sort": {"sum": -1}},
            {"$limit": 1},
        ])
        assert rows == [{"_id": "b", "sum": 5, "max": 5}]

    def test_match_project_count(self):
        assert run_pipeline(self.docs, [{"$match": {"k": "a"}}, {"$count": "n"}]) == [{"n": 2}]
        assert run_pipeline(self.docs, [{"$skip": 2}, {"$project": {"v": 1}}]) == [{"v": 3}]

    def test_unknown_stage(self):
        with pytest.raises(ValueError):
            run_pipeline(self.docs, [{"$lookup": {}}])
