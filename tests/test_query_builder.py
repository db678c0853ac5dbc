"""
Tests for the query builder.

Covers:
- Chain state: where merging, find replacement, skip/limit clamping, modes
- Single-use guard after a terminal
- Await sugar on find()
- Scopes
- Aggregation pipelines (document only) with the implicit $match stage
"""

import pytest

from ardea.faults import QueryFault
from ardea.models import Model, NumberField, QueryBuilder, SoftDeleteMode, StringField


class Item(Model):
    table = "items"

    name = StringField()
    kind = StringField()
    price = NumberField()

    class Meta:
        soft_delete = True
        scopes = {"cheap": lambda: {"price": {"lt": 10}}}


async def seed_items():
    await Item.create_many([
        {"name": "pen", "kind": "office", "price": 2},
        {"name": "desk", "kind": "office", "price": 120},
        {"name": "apple", "kind": "food", "price": 1},
    ])


# ============================================================================
# Chain state
# ============================================================================


class TestChainState:
    def test_where_merges_operator_maps(self):
        builder = Item.query().where({"price": {"gte": 1}}).where({"price": {"lt": 10}, "kind": "office"})
        assert builder._condition("id") == {"price": {"gte": 1, "lt": 10}, "kind": "office"}

    def test_later_equality_wins(self):
        builder = Item.query().where({"kind": "food"}).where({"kind": "office"})
        assert builder._condition("id") == {"kind": "office"}

    def test_scalar_condition_is_primary_key(self):
        assert Item.find(5)._condition("_id") == {"_id": 5}

    def test_find_replaces_condition(self):
        builder = Item.query().where({"kind": "food"}).find({"name": "pen"}, fields=["name"])
        assert builder._condition("id") == {"name": "pen"}
        assert builder._fields == ["name"]

    def test_skip_and_limit_are_clamped(self):
        builder = Item.query().skip(-3).limit(0)
        assert builder._skip == 0
        assert builder._limit == 1
        builder = Item.query().skip(2.9).limit(7.2)
        assert builder._skip == 2
        assert builder._limit == 7

    def test_modes(self):
        assert Item.query()._mode == SoftDeleteMode.DEFAULT
        assert Item.with_trashed()._mode == SoftDeleteMode.INCLUDE_TRASHED
        assert Item.query().include_trashed()._mode == SoftDeleteMode.INCLUDE_TRASHED
        assert Item.only_trashed()._mode == SoftDeleteMode.ONLY_TRASHED

    def test_chain_returns_same_builder(self):
        builder = Item.query()
        assert builder.where({"a": 1}).sort("a").skip(1).limit(2).no_cache() is builder
        assert isinstance(builder, QueryBuilder)

    def test_unknown_scope(self):
        with pytest.raises(QueryFault, match="Unknown scope"):
            Item.scope("luxury")


# ============================================================================
# Execution
# ============================================================================


class TestExecution:
    @pytest.mark.asyncio
    async def test_builder_is_single_use(self, store):
        await store.bind(Item)
        await seed_items()
        builder = Item.query().where({"kind": "office"})
        assert len(await builder.all()) == 2
        assert builder.executed
        with pytest.raises(QueryFault, match="already been executed"):
            await builder.count()
        with pytest.raises(QueryFault):
            builder.where({"price": 1})

    @pytest.mark.asyncio
    async def test_awaiting_find_resolves_one(self, store):
        await store.bind(Item)
        await seed_items()
        item = await Item.find({"kind": "office"}).sort("-price")
        assert item.name == "desk"
        assert await Item.find({"kind": "toys"}) is None

    @pytest.mark.asyncio
    async def test_find_one_alias(self, store):
        await store.bind(Item)
        await seed_items()
        assert (await Item.query().where({"name": "pen"}).one()).price == 2

    @pytest.mark.asyncio
    async def test_scope_execution(self, store):
        await store.bind(Item)
        await seed_items()
        names = [i.name for i in await Item.scope("cheap").sort("name").all()]
        assert names == ["apple", "pen"]

    @pytest.mark.asyncio
    async def test_count_ignores_window(self, store):
        await store.bind(Item)
        await seed_items()
        assert await Item.query().sort("price").skip(1).limit(1).count() == 3

    @pytest.mark.asyncio
    async def test_trashed_modes(self, store):
        await store.bind(Item)
        await seed_items()
        await Item.delete({"name": "desk"})
        assert [i.name for i in await Item.query().sort("name").all()] == ["apple", "pen"]
        assert [i.name for i in await Item.only_trashed().all()] == ["desk"]
        assert await Item.with_trashed().count() == 3


# ============================================================================
# Aggregation
# ============================================================================


class TestAggregate:
    @pytest.mark.asyncio
    async def test_pipeline_with_implicit_match(self, memory_adapter):
        Item.set_adapter(memory_adapter)
        await seed_items()
        await Item.delete({"name": "apple"})
        rows = await Item.find({"price": {"gte": 2}}).aggregate([
            {"$group": {"_id": "$kind", "total": {"$sum": "$price"}}},
            {"$sort": {"total": -1}},
        ])
        assert rows == [{"_id": "office", "total": 122}]

    @pytest.mark.asyncio
    async def test_trashed_filter_reaches_the_pipeline(self, memory_adapter):
        Item.set_adapter(memory_adapter)
        await seed_items()
        await Item.delete({"name": "pen"})
        rows = await Item.aggregate([{"$count": "n"}])
        assert rows == [{"n": 2}]
        rows = await Item.with_trashed().aggregate([{"$count": "n"}])
        assert rows == [{"n": 3}]

    @pytest.mark.asyncio
    async def test_sql_backends_refuse_pipelines(self, sqlite_adapter):
        Item.set_adapter(sqlite_adapter)
        with pytest.raises(QueryFault, match="document backend"):
            await Item.aggregate([{"$count": "n"}])
