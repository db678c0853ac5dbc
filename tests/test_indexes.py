"""
Tests for index descriptors and the index manager.

Covers:
- Descriptor normalization (mapping and Index objects), default names
- Text and geo descriptors
- create_indexes / get_indexes / drop_indexes on both backends
- force re-creation and unique enforcement
- Model.init: lazy binding, index creation, failures
"""

import pytest

from ardea.adapters import MemoryDocumentAdapter
from ardea.config import ArdeaConfig
from ardea.db import configure, register_adapter, register_provider
from ardea.faults import AdapterNotConfiguredFault, BackendFault, IndexFault, ModelInitFault
from ardea.models import GeoIndex, Index, Model, StringField, TextIndex
from ardea.models.indexes import generate_index_name, normalize_index


class Account(Model):
    table = "accounts"

    email = StringField()
    city = StringField()

    class Meta:
        indexes = [
            {"field": "email", "unique": True},
            {"fields": {"city": 1}},
        ]


# ============================================================================
# Descriptors
# ============================================================================


class TestDescriptors:
    def test_single_field(self):
        spec = normalize_index({"field": "email", "unique": True}, "users", "document")
        assert spec.keys == [("email", 1)]
        assert spec.name == "email_1"
        assert spec.unique is True

    def test_sql_naming(self):
        spec = normalize_index({"field": "email"}, "users", "sql")
        assert spec.name == "idx_users_email"

    def test_compound_with_direction_names(self):
        spec = normalize_index({"fields": {"city": 1, "created": "desc"}}, "users", "document")
        assert spec.keys == [("city", 1), ("created", -1)]
        assert spec.name == "city_1_created_-1"
        assert spec.fields == ["city", "created"]

    def test_explicit_name(self):
        spec = normalize_index({"field": "email", "name": "by_email"}, "users", "sql")
        assert spec.name == "by_email"

    def test_text_index_weights(self):
        spec = normalize_index({"fields": {"title": 10, "body": 2}, "type": "text"}, "posts", "document")
        assert spec.keys == [("title", "text"), ("body", "text")]
        assert spec.weights == {"title": 10, "body": 2}
        assert spec.index_type == "text"

    def test_geo_index(self):
        spec = normalize_index({"field": "location", "type": "2dsphere"}, "places", "document")
        assert spec.keys == [("location", "2dsphere")]

    def test_index_objects(self):
        spec = normalize_index(Index(["slug", "-created"], unique=True), "posts", "sql")
        assert spec.keys == [("slug", 1), ("created", -1)]
        assert spec.name == "idx_posts_slug_created"
        assert normalize_index(TextIndex(["body"]), "posts", "document").keys == [("body", "text")]
        assert normalize_index(GeoIndex("loc", type="2d"), "posts", "document").keys == [("loc", "2d")]

    def test_bad_descriptors(self):
        with pytest.raises(IndexFault):
            normalize_index({"unique": True}, "users", "sql")
        with pytest.raises(IndexFault):
            normalize_index("email", "users", "sql")
        with pytest.raises(ValueError):
            GeoIndex("loc", type="3d")

    def test_generate_index_name(self):
        assert generate_index_name([("a", 1), ("b", -1)], "t", "document") == "a_1_b_-1"
        assert generate_index_name([("a", 1), ("b", -1)], "t", "sql") == "idx_t_a_b"


# ============================================================================
# Manager
# ============================================================================


def expected_names(store):
    if store.kind == "sql":
        return ["idx_accounts_email", "idx_accounts_city"]
    return ["email_1", "city_1"]


class TestIndexManager:
    @pytest.mark.asyncio
    async def test_create_list_drop(self, store):
        await store.bind(Account)
        assert await Account.create_indexes() == expected_names(store)

        listed = {idx["name"]: idx for idx in await Account.get_indexes()}
        for name in expected_names(store):
            assert name in listed
        assert listed[expected_names(store)[0]]["unique"] is True

        dropped = await Account.drop_indexes()
        assert sorted(dropped) == sorted(expected_names(store))
        remaining = [idx for idx in await Account.get_indexes() if not idx["primary"]]
        assert remaining == []

    @pytest.mark.asyncio
    async def test_force_recreates(self, store):
        await store.bind(Account)
        await Account.create_indexes()
        assert await Account.create_indexes(force=True) == expected_names(store)

    @pytest.mark.asyncio
    async def test_unique_index_is_enforced(self, store):
        await store.bind(Account)
        await Account.create_indexes()
        await Account.create(email="a@example.com")
        with pytest.raises(BackendFault):
            await Account.create(email="a@example.com")
        assert await Account.count() == 1

    @pytest.mark.asyncio
    async def test_unique_index_over_duplicates_fails(self, memory_adapter):
        Account.set_adapter(memory_adapter)
        await Account.create_many([{"email": "dup@example.com"}, {"email": "dup@example.com"}])
        with pytest.raises(IndexFault):
            await Account.create_indexes()


# ============================================================================
# Model.init
# ============================================================================


class TestInit:
    @pytest.mark.asyncio
    async def test_init_binds_and_builds_indexes(self, store):
        class Ledger(Model):
            table = "ledgers"
            email = StringField()

            class Meta:
                indexes = [{"field": "email", "unique": True}]

        await store.create_table(Ledger)
        register_adapter(store.adapter)
        await Ledger.init()
        assert Ledger.get_adapter() is store.adapter
        names = [idx["name"] for idx in await Ledger.get_indexes()]
        assert any("email" in name for name in names)

    @pytest.mark.asyncio
    async def test_init_can_skip_indexes(self, memory_adapter):
        class Ledger(Model):
            table = "ledgers"
            email = StringField()

            class Meta:
                indexes = [{"field": "email"}]

        register_adapter(memory_adapter)
        await Ledger.init(create_indexes=False)
        assert [idx["name"] for idx in await Ledger.get_indexes()] == ["_id_"]

    @pytest.mark.asyncio
    async def test_config_disables_automatic_indexes(self):
        class Ledger(Model):
            table = "ledgers"
            email = StringField()

            class Meta:
                indexes = [{"field": "email"}]

        adapter = await configure(ArdeaConfig(url="memory://ledger", auto_create_indexes=False))
        await Ledger.init()
        assert Ledger.get_adapter() is adapter
        assert [idx["name"] for idx in await Ledger.get_indexes()] == ["_id_"]

    @pytest.mark.asyncio
    async def test_first_use_initializes_lazily(self):
        class Lazy(Model):
            table = "lazy"
            name = StringField()

        register_provider(lambda: MemoryDocumentAdapter("lazy"))
        created = await Lazy.create(name="auto")
        assert created.pk is not None
        assert Lazy.get_adapter().is_connected

    @pytest.mark.asyncio
    async def test_named_connection(self, memory_adapter):
        class Reporting(Model):
            table = "reports"
            name = StringField()

            class Meta:
                connection = "reporting"

        register_adapter(memory_adapter, alias="reporting")
        await Reporting.create(name="q1")
        assert Reporting.get_adapter() is memory_adapter

    @pytest.mark.asyncio
    async def test_missing_adapter(self):
        class Orphan(Model):
            table = "orphans"

        with pytest.raises(AdapterNotConfiguredFault):
            await Orphan.count()

    @pytest.mark.asyncio
    async def test_provider_failure(self):
        class Broken(Model):
            table = "broken"

        def provider():
            raise RuntimeError("no route to host")

        register_provider(provider)
        with pytest.raises(ModelInitFault, match="no route to host"):
            await Broken.init()

    @pytest.mark.asyncio
    async def test_index_failure_during_init(self, memory_adapter):
        class Strict(Model):
            table = "strict"
            code = StringField()

            class Meta:
                indexes = [{"field": "code", "unique": True}]

        Strict.set_adapter(memory_adapter)
        await Strict.create_many([{"code": "x"}, {"code": "x"}])
        with pytest.raises(ModelInitFault):
            await Strict.init()

    @pytest.mark.asyncio
    async def test_abstract_models_cannot_init(self):
        class Shape(Model):
            class Meta:
                abstract = True

        with pytest.raises(ModelInitFault):
            await Shape.init()
