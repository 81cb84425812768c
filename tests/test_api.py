"""Tests for larder.api.Workspace."""

import json

import pytest

from larder.api import DEFAULT_SETTINGS, EXPORT_FORMAT, Workspace
from larder.config import StoreConfig
from larder.errors import GatewayError
from larder.interpreter import RECEIPT_FORM, Structured
from larder.record_store import MemoryRecordStore

from tests.conftest import StaticIdentity


class TestCollections:
    def test_repositories_are_cached(self, workspace):
        assert workspace.repository("tasks") is workspace.repository("tasks")

    def test_unknown_type(self, workspace):
        with pytest.raises(KeyError):
            workspace.repository("spaceships")

    def test_view(self, workspace):
        view = workspace.view("transactions", equals={"status": "pending"})
        assert [e["vendor"] for e in view.items] == ["The Executive Restaurant"]
        view = workspace.view("transactions", sort="amount", descending=True)
        assert [e["amount"] for e in view.items] == [2800.00, 1250.50, 450.75]

    def test_view_searches_type_fields(self, workspace):
        assert workspace.view("transactions", search="cab").count == 1

    def test_form(self, workspace):
        form = workspace.form("tasks", title="From form")
        created = form.submit()
        assert workspace.repository("tasks").get(created["id"])["title"] == "From form"
        assert workspace.form("tasks", id=created["id"]).is_edit

    def test_clear_all(self, workspace):
        workspace.clear()
        assert all(len(workspace.repository(n)) == 0 for n in workspace.entity_types())

    def test_app_prefix(self, tmp_path):
        store = MemoryRecordStore()
        config = StoreConfig(path=tmp_path, app="shop", backend="memory")
        with Workspace(config=config, record_store=store) as ws:
            ws.repository("products").list()
            ws.update_settings(currency="EUR")
        assert set(store.keys()) == {"shop_products", "shop_settings"}


class TestSettings:
    def test_defaults(self, workspace):
        assert workspace.settings() == DEFAULT_SETTINGS

    def test_update(self, workspace):
        workspace.update_settings(darkMode=True)
        assert workspace.settings() == {**DEFAULT_SETTINGS, "darkMode": True}
        assert workspace.record_store.load_settings("larder_settings")["darkMode"] is True


class TestExportImport:
    def test_export_shape(self, workspace):
        data = workspace.export_data(["tasks"])
        assert data["format"] == EXPORT_FORMAT
        assert data["version"] == 1
        assert list(data["collections"]) == ["tasks"]
        assert len(data["collections"]["tasks"]) == 3
        assert data["settings"] == DEFAULT_SETTINGS

    def test_merge_skips_existing(self, workspace):
        data = workspace.export_data(["tasks"])
        data["collections"]["tasks"].append({"id": "new", "title": "Imported"})
        stats = workspace.import_data(data)
        assert stats == {"imported": 1, "skipped": 3}
        assert workspace.repository("tasks").list()[0]["title"] == "Imported"

    def test_replace(self, workspace, tmp_path):
        workspace.repository("tasks").create(title="Local only")
        data = {
            "format": EXPORT_FORMAT,
            "version": 1,
            "collections": {"tasks": [{"id": "a", "title": "Only this"}]},
            "settings": {"currency": "GBP"},
        }
        stats = workspace.import_data(data, mode="replace")
        assert stats == {"imported": 1, "skipped": 0}
        assert [e["id"] for e in workspace.repository("tasks").list()] == ["a"]
        assert workspace.settings()["currency"] == "GBP"

    def test_round_trip_into_fresh_workspace(self, workspace, tmp_path):
        workspace.repository("tasks").create(title="Carried over")
        data = workspace.export_data()
        config = StoreConfig(path=tmp_path, backend="memory")
        with Workspace(config=config, record_store=MemoryRecordStore()) as other:
            other.import_data(data, mode="replace")
            assert other.repository("tasks").list() == workspace.repository("tasks").list()

    @pytest.mark.parametrize("data", [
        {"format": "other"},
        {"format": EXPORT_FORMAT, "version": 99},
    ])
    def test_rejects_invalid(self, workspace, data):
        with pytest.raises(ValueError):
            workspace.import_data(data)

    @pytest.mark.parametrize("mode", ["merge", "replace"])
    def test_unknown_collection_rejected_before_changes(self, workspace, mode):
        data = {
            "format": EXPORT_FORMAT,
            "version": 1,
            "collections": {"tasks": [{"id": "a", "title": "Only this"}], "spaceships": []},
            "settings": {"currency": "GBP"},
        }
        with pytest.raises(ValueError, match="spaceships"):
            workspace.import_data(data, mode=mode)
        assert len(workspace.repository("tasks")) == 3
        assert workspace.settings()["currency"] == "USD"

    def test_merge_tolerates_stored_entities_without_id(self, tmp_path):
        store = MemoryRecordStore({"larder_tasks": json.dumps([{"title": "Legacy"}])})
        config = StoreConfig(path=tmp_path, backend="memory")
        with Workspace(config=config, record_store=store) as ws:
            data = {
                "format": EXPORT_FORMAT,
                "version": 1,
                "collections": {"tasks": [{"id": "new", "title": "Imported"}]},
            }
            assert ws.import_data(data) == {"imported": 1, "skipped": 0}
            assert [e["title"] for e in ws.repository("tasks").list()] == ["Imported", "Legacy"]

    def test_unknown_mode(self, workspace):
        with pytest.raises(ValueError):
            workspace.import_data({"format": EXPORT_FORMAT}, mode="upsert")

    def test_csv(self, workspace):
        text = workspace.export_csv("transactions")
        workspace.clear("transactions")
        assert workspace.import_csv("transactions", text) == 3
        vendors = [e["vendor"] for e in workspace.repository("transactions").list()]
        assert vendors == ["Office Depot", "The Executive Restaurant", "City Cab Services"]

    def test_csv_of_view(self, workspace):
        view = workspace.view("transactions", equals={"status": "approved"})
        text = workspace.export_csv("transactions", view.items)
        assert len(text.splitlines()) == 2


class TestAI:
    def test_interpreter_lookup(self, workspace):
        assert workspace.interpreter("transactions").schema is RECEIPT_FORM
        assert workspace.interpreter("receipt").schema is RECEIPT_FORM
        assert workspace.interpreter(RECEIPT_FORM).schema is RECEIPT_FORM
        with pytest.raises(KeyError):
            workspace.interpreter("students")

    @pytest.mark.asyncio
    async def test_gateway_fills_form(self, workspace, scripted_backend):
        interpreter = workspace.interpreter("transactions")
        prompt = interpreter.prompt("Lunch at Acme")
        scripted_backend.responses[prompt] = '{"vendor": "Acme", "amount": 18.5}'

        form = workspace.form("transactions")
        response = interpreter.interpret(await workspace.gateway().request(prompt), form.values)
        assert isinstance(response, Structured)
        form.apply(response)
        created = form.submit()
        assert workspace.repository("transactions").get(created["id"])["vendor"] == "Acme"

    @pytest.mark.asyncio
    async def test_gateway_uses_attachment_limit(self, tmp_path, scripted_backend):
        config = StoreConfig(path=tmp_path, backend="memory", max_attachment_bytes=2)
        with Workspace(config=config, record_store=MemoryRecordStore(),
                       backend=scripted_backend) as ws:
            with pytest.raises(GatewayError):
                await ws.gateway().request("scan", b"too big")
        assert scripted_backend.calls == []

    def test_backend_from_config(self, tmp_path):
        config = StoreConfig(path=tmp_path, backend="memory")
        with Workspace(config=config, record_store=MemoryRecordStore()) as ws:
            assert type(ws._get_backend()).__name__ == "NoBackend"


class TestIdentity:
    def test_current_user_and_logout(self, tmp_path):
        identity = StaticIdentity({"name": "Ann", "email": "ann@example.com"})
        config = StoreConfig(path=tmp_path, backend="memory")
        with Workspace(config=config, record_store=MemoryRecordStore(), identity=identity) as ws:
            assert ws.current_user["name"] == "Ann"
            ws.logout()
            assert ws.current_user is None
            assert identity.logged_out

    def test_no_identity(self, workspace):
        assert workspace.current_user is None
        workspace.logout()


class TestPersistence:
    def test_sqlite_store_survives_reopen(self, tmp_path, monkeypatch):
        for name in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "LARDER_OPENAI_API_KEY", "LARDER_AI_URL"):
            monkeypatch.delenv(name, raising=False)
        with Workspace(tmp_path) as ws:
            created = ws.repository("tasks").create(title="Durable")
        with Workspace(tmp_path) as ws:
            assert ws.repository("tasks").get(created["id"])["title"] == "Durable"
            assert ws.config.ai.name == "none"
        assert (tmp_path / "records.db").exists()
        assert (tmp_path / "larder.toml").exists()
