"""Tests for larder.forms: pending create/edit drafts."""

import pytest

from larder.errors import ValidationError
from larder.forms import PendingForm
from larder.interpreter import Raw, Structured


class TestCreate:
    def test_prefilled_with_defaults(self, tasks):
        form = PendingForm.start_create(tasks, title="Draft")
        assert form.get("title") == "Draft"
        assert form.get("priority") == "medium"
        assert not form.is_edit
        assert "id" not in form.values

    def test_nothing_persists_until_submit(self, tasks):
        tasks.list()
        revision = tasks.revision
        form = PendingForm.start_create(tasks)
        form.set("title", "Buy milk")
        assert tasks.revision == revision
        created = form.submit()
        assert tasks.list()[0] == created
        assert not form.is_open

    def test_cancel_discards(self, tasks):
        form = PendingForm.start_create(tasks, title="Never saved")
        form.cancel()
        assert all(e["title"] != "Never saved" for e in tasks.list())
        with pytest.raises(RuntimeError):
            form.submit()

    def test_id_cannot_be_set(self, tasks):
        form = PendingForm.start_create(tasks)
        with pytest.raises(ValueError):
            form.set("id", "1")

    def test_values_is_a_copy(self, tasks):
        form = PendingForm.start_create(tasks)
        form.values["tags"].append("x")
        assert form.get("tags") == []


class TestValidation:
    def test_required_fields(self, tasks):
        form = PendingForm.start_create(tasks)
        assert form.validate() == {"title": "title is required"}
        with pytest.raises(ValidationError) as exc_info:
            form.submit()
        assert exc_info.value.errors == {"title": "title is required"}
        assert form.is_open

    def test_whitespace_is_missing(self, tasks):
        form = PendingForm.start_create(tasks, title="   ")
        assert "title" in form.validate()

    def test_positive_amount(self, transactions):
        form = PendingForm.start_create(transactions, vendor="Acme")
        assert form.validate() == {"amount": "amount must be a number greater than zero"}
        form.set("amount", "12")
        assert "amount" in form.validate()
        form.set("amount", 12.5)
        assert form.validate() == {}


class TestEdit:
    def test_edit_updates_in_place(self, tasks):
        form = PendingForm.start_edit(tasks, "2")
        assert form.is_edit and form.editing_id == "2"
        form.set("status", "completed")
        updated = form.submit()
        assert updated["id"] == "2"
        assert tasks.get("2")["status"] == "completed"
        assert len(tasks.list()) == 3

    def test_edit_unknown(self, tasks):
        with pytest.raises(KeyError):
            PendingForm.start_edit(tasks, "nope")

    def test_edit_of_deleted_entity(self, tasks):
        form = PendingForm.start_edit(tasks, "2")
        tasks.delete("2")
        assert form.submit() is None
        assert tasks.get("2") is None


class TestApply:
    def test_structured_patch(self, transactions):
        form = PendingForm.start_create(transactions)
        changed = form.apply(Structured({"vendor": "Acme", "amount": 42.5, "id": "x"}))
        assert changed is True
        assert form.get("vendor") == "Acme"
        assert form.get("amount") == 42.5
        assert "id" not in form.values
        created = form.submit()
        assert created["vendor"] == "Acme"
        assert created["id"] != "x"

    def test_raw_leaves_values(self, transactions):
        form = PendingForm.start_create(transactions, vendor="Kept")
        assert form.apply(Raw("Sorry, I can't read that")) is False
        assert form.get("vendor") == "Kept"
        assert form.raw_text == "Sorry, I can't read that"

    def test_structured_clears_raw_text(self, transactions):
        form = PendingForm.start_create(transactions)
        form.apply(Raw("nothing"))
        form.apply(Structured({"vendor": "Acme"}))
        assert form.raw_text is None

    def test_rejects_other_types(self, tasks):
        with pytest.raises(TypeError):
            PendingForm.start_create(tasks).apply("Title: x")
