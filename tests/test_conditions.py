"""
Tests for the condition compiler.

Covers:
- compile_sql: equality, NULL, operators, IN/NOT IN with NULL, soft-delete modes
- compile_document: $-operators, LIKE translation, MISSING, soft-delete modes
- Identifier quoting and malformed conditions
- Sort normalization, ORDER BY and projections
"""

import re

import pytest

from ardea.faults import QueryFault
from ardea.models.conditions import (
    CompiledWhere,
    SoftDeleteMode,
    compile_document,
    compile_sql,
    document_projection,
    is_operator_map,
    like_to_regex,
    normalize_condition,
    normalize_sort,
    quote_ident,
    sql_columns,
    sql_order_by,
)
from ardea.models.fields import MISSING


# ============================================================================
# Shared helpers
# ============================================================================


class TestHelpers:
    def test_scalar_condition_targets_primary_key(self):
        assert normalize_condition(7, "id") == {"id": 7}
        assert normalize_condition("abc", "_id") == {"_id": "abc"}

    def test_none_condition_is_empty(self):
        assert normalize_condition(None, "id") == {}

    def test_operator_map_detection(self):
        assert is_operator_map({"gt": 1, "$lt": 5})
        assert not is_operator_map({"city": "Oslo"})
        assert not is_operator_map({})
        assert not is_operator_map(3)

    def test_quote_ident(self):
        assert quote_ident("name") == '"name"'
        assert quote_ident("profile.city") == '"profile"."city"'

    @pytest.mark.parametrize("name", ["bad name", 'x"; DROP TABLE users; --', "1abc", ""])
    def test_quote_ident_rejects_unsafe_names(self, name):
        with pytest.raises(QueryFault):
            quote_ident(name)

    def test_like_to_regex(self):
        assert like_to_regex("a_c%") == "^a.c.*$"
        assert like_to_regex("50.5%") == "^50\\.5.*$"


# ============================================================================
# SQL
# ============================================================================


class TestCompileSQL:
    def test_empty_condition(self):
        where = compile_sql({})
        assert where == CompiledWhere("", ())
        assert where.clause == ""

    def test_equality_and_operators_in_fixed_order(self):
        where = compile_sql({"age": {"gte": 18, "lt": 65}, "status": "active"})
        assert where.sql == '"age" < ? AND "age" >= ? AND "status" = ?'
        assert where.params == (65, 18, "active")
        assert where.clause.startswith(" WHERE ")

    def test_dollar_prefixed_operators(self):
        where = compile_sql({"age": {"$gt": 1}})
        assert where.sql == '"age" > ?'
        assert where.params == (1,)

    def test_scalar_is_primary_key(self):
        where = compile_sql(5, primary_key="uid")
        assert where.sql == '"uid" = ?'
        assert where.params == (5,)

    def test_none_and_missing_compile_to_is_null(self):
        assert compile_sql({"email": None}).sql == '"email" IS NULL'
        assert compile_sql({"email": MISSING}).sql == '"email" IS NULL'

    def test_ne(self):
        assert compile_sql({"role": {"ne": "admin"}}).sql == '"role" != ?'
        assert compile_sql({"role": {"ne": None}}).sql == '"role" IS NOT NULL'

    def test_in_and_nin(self):
        where = compile_sql({"role": {"in": ["a", "b"]}, "tier": {"nin": [1]}})
        assert where.sql == '"role" IN (?, ?) AND "tier" NOT IN (?)'
        assert where.params == ("a", "b", 1)

    def test_empty_in_matches_nothing(self):
        assert compile_sql({"role": {"in": []}}).sql == "1 = 0"

    def test_empty_nin_matches_everything(self):
        assert compile_sql({"role": {"nin": []}}).sql == ""

    def test_in_with_null(self):
        where = compile_sql({"role": {"in": ["a", None]}})
        assert where.sql == '("role" IN (?) OR "role" IS NULL)'
        assert where.params == ("a",)

    def test_nin_with_null(self):
        where = compile_sql({"role": {"nin": ["a", None]}})
        assert where.sql == '"role" NOT IN (?) AND "role" IS NOT NULL'

    def test_exists(self):
        assert compile_sql({"email": {"exists": True}}).sql == '"email" IS NOT NULL'
        assert compile_sql({"email": {"exists": False}}).sql == '"email" IS NULL'

    def test_like_and_regex(self):
        where = compile_sql({"name": {"like": "al%"}, "code": {"regex": "^A", "options": "i"}})
        assert where.sql == '"name" LIKE ? AND "code" REGEXP ?'
        assert where.params == ("al%", "(?i)^A")

    def test_regex_operator_is_configurable(self):
        where = compile_sql({"code": {"regex": "x"}}, regex_operator="~")
        assert where.sql == '"code" ~ ?'

    def test_compiled_pattern_is_unwrapped(self):
        where = compile_sql({"code": {"regex": re.compile("^z")}})
        assert where.params == ("^z",)

    def test_to_db_converts_bound_values(self):
        where = compile_sql({"tags": ["a"]}, to_db=lambda field, value: f"{field}:{value!r}")
        assert where.params == ("tags:['a']",)

    def test_duplicate_operator_raises(self):
        with pytest.raises(QueryFault):
            compile_sql({"age": {"gt": 1, "$gt": 2}})

    def test_soft_delete_modes(self):
        default = compile_sql({"name": "x"}, soft_delete_field="deletedAt")
        assert default.sql == '"name" = ? AND "deletedAt" IS NULL'

        only = compile_sql({}, soft_delete_field="deletedAt", mode=SoftDeleteMode.ONLY_TRASHED)
        assert only.sql == '"deletedAt" IS NOT NULL'

        everything = compile_sql({}, soft_delete_field="deletedAt", mode=SoftDeleteMode.INCLUDE_TRASHED)
        assert everything.sql == ""

    def test_deterministic_output(self):
        condition = {"b": 1, "a": {"lte": 3, "gt": 0}}
        assert compile_sql(condition) == compile_sql(dict(condition))


# ============================================================================
# Documents
# ============================================================================


class TestCompileDocument:
    def test_operators_are_prefixed(self):
        flt = compile_document({"age": {"gte": 18, "lt": 65}, "status": "active"})
        assert flt == {"age": {"$lt": 65, "$gte": 18}, "status": "active"}

    def test_scalar_is_primary_key(self):
        assert compile_document("abc") == {"_id": "abc"}

    def test_like_becomes_case_insensitive_regex(self):
        flt = compile_document({"name": {"like": "a%"}})
        assert flt == {"name": {"$regex": "^a.*$", "$options": "i"}}

    def test_regex_with_options(self):
        flt = compile_document({"name": {"regex": "^b", "options": "i"}})
        assert flt == {"name": {"$regex": "^b", "$options": "i"}}

    def test_like_and_regex_cannot_combine(self):
        with pytest.raises(QueryFault):
            compile_document({"name": {"like": "a%", "regex": "^a"}})

    def test_missing_means_absent(self):
        assert compile_document({"email": MISSING}) == {"email": {"$exists": False}}

    def test_none_is_kept_literal(self):
        assert compile_document({"email": None}) == {"email": None}

    def test_in_is_listified(self):
        assert compile_document({"role": {"in": ("a", "b")}}) == {"role": {"$in": ["a", "b"]}}

    def test_invalid_field_name(self):
        with pytest.raises(QueryFault):
            compile_document({"$where": "1"})

    def test_soft_delete_modes(self):
        assert compile_document({}, soft_delete_field="deletedAt") == {"deletedAt": {"$exists": False}}
        only = compile_document({}, soft_delete_field="deletedAt", mode=SoftDeleteMode.ONLY_TRASHED)
        assert only == {"deletedAt": {"$exists": True}}
        everything = compile_document({}, soft_delete_field="deletedAt", mode=SoftDeleteMode.INCLUDE_TRASHED)
        assert everything == {}


# ============================================================================
# Sort / projection
# ============================================================================


class TestSortAndProjection:
    def test_direction_shorthand_targets_primary_key(self):
        assert normalize_sort("desc", "id") == [("id", -1)]
        assert normalize_sort("ASC", "_id") == [("_id", 1)]

    def test_field_shorthand(self):
        assert normalize_sort("-created", "id") == [("created", -1)]
        assert normalize_sort("name", "id") == [("name", 1)]

    def test_mapping_and_sequence(self):
        assert normalize_sort({"age": -1, "name": "asc"}, "id") == [("age", -1), ("name", 1)]
        assert normalize_sort(["a", ("b", "descending")], "id") == [("a", 1), ("b", -1)]

    def test_empty_sort(self):
        assert normalize_sort(None, "id") == []

    @pytest.mark.parametrize("direction", [0, 2, "up", True])
    def test_invalid_direction(self, direction):
        with pytest.raises(QueryFault):
            normalize_sort({"age": direction}, "id")

    def test_order_by(self):
        assert sql_order_by([("age", -1), ("name", 1)]) == ' ORDER BY "age" DESC, "name" ASC'
        assert sql_order_by([]) == ""

    def test_projection(self):
        assert document_projection(["name", "age"]) == {"name": 1, "age": 1}
        assert document_projection(None) is None

    def test_sql_columns_always_include_primary_key(self):
        assert sql_columns(["name"], "id") == '"id", "name"'
        assert sql_columns(None, "id") == "*"
