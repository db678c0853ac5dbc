"""
Tests for relation helpers.

Covers:
- belongs_to with primary key and explicit local key
- has_one / has_many with sort, limit and projection
- Soft-delete modes on related records
- Missing keys resolve to None / [] without a query
"""

import pytest

from ardea.db import get_query_log
from ardea.models import AnyField, Model, SoftDeleteMode, StringField


class Author(Model):
    table = "authors"

    name = StringField(required=True)


class Book(Model):
    table = "books"

    title = StringField(required=True)
    author_id = AnyField()
    author_name = StringField()

    class Meta:
        soft_delete = True


class Biography(Model):
    table = "biographies"

    author_id = AnyField()
    text = StringField()


async def library(store):
    await store.bind(Author, Book, Biography)
    ada = await Author.create(name="Ada")
    await Book.create_many([
        {"title": "Notes", "author_id": ada.pk, "author_name": "Ada"},
        {"title": "Engines", "author_id": ada.pk, "author_name": "Ada"},
        {"title": "Letters", "author_id": ada.pk, "author_name": "Ada"},
    ])
    await Biography.create(author_id=ada.pk, text="Countess of Lovelace")
    return ada


class TestBelongsTo:
    @pytest.mark.asyncio
    async def test_by_primary_key(self, store):
        ada = await library(store)
        book = await Book.find_one({"title": "Notes"})
        author = await book.belongs_to(Author, "author_id")
        assert author == ada

    @pytest.mark.asyncio
    async def test_by_local_key(self, store):
        ada = await library(store)
        book = await Book.find_one({"title": "Engines"})
        author = await book.belongs_to(Author, "author_name", local_key="name")
        assert author.pk == ada.pk

    @pytest.mark.asyncio
    async def test_projection(self, store):
        await library(store)
        book = await Book.find_one({"title": "Notes"})
        author = await book.belongs_to(Author, "author_id", fields=["name"])
        assert author.name == "Ada"

    @pytest.mark.asyncio
    async def test_missing_foreign_key_skips_the_query(self, store):
        await store.bind(Author, Book)
        orphan = Book(title="Anon")
        log = get_query_log()
        log.clear()
        assert await orphan.belongs_to(Author, "author_id") is None
        assert log.entries == []


class TestHasOneAndMany:
    @pytest.mark.asyncio
    async def test_has_one(self, store):
        ada = await library(store)
        bio = await ada.has_one(Biography, "author_id")
        assert bio.text == "Countess of Lovelace"

    @pytest.mark.asyncio
    async def test_has_many_sorted_and_limited(self, store):
        ada = await library(store)
        books = await ada.has_many(Book, "author_id", sort="title")
        assert [b.title for b in books] == ["Engines", "Letters", "Notes"]
        first_two = await ada.has_many(Book, "author_id", sort="-title", limit=2)
        assert [b.title for b in first_two] == ["Notes", "Letters"]
        skipped = await ada.has_many(Book, "author_id", sort="title", skip=2)
        assert [b.title for b in skipped] == ["Notes"]

    @pytest.mark.asyncio
    async def test_has_many_respects_soft_delete(self, store):
        ada = await library(store)
        await Book.delete({"title": "Letters"})
        live = await ada.has_many(Book, "author_id")
        assert len(live) == 2
        everything = await ada.has_many(Book, "author_id", mode=SoftDeleteMode.INCLUDE_TRASHED)
        assert len(everything) == 3
        trashed = await ada.has_many(Book, "author_id", mode=SoftDeleteMode.ONLY_TRASHED)
        assert [b.title for b in trashed] == ["Letters"]

    @pytest.mark.asyncio
    async def test_unsaved_parent_has_nothing(self, store):
        await store.bind(Author, Book)
        draft = Author(name="Draft")
        assert await draft.has_many(Book, "author_id") == []
        assert await draft.has_one(Book, "author_id") is None
