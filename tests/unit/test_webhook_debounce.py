"""
Unit tests for inventory webhook debouncing and the row rewrite job.

Run: pytest tests/unit/test_webhook_debounce.py -v
"""

from functools import partial

import pytest

import jobs.tasks as tasks
from jobs.inventory_webhook_job import InventoryWebhookJob, WebhookDebouncer
from models.sync_run import SyncRunStatus, SyncType
from models.webhook import InventoryLevelWebhook
from services.cache_service import debounce_key, get_cache
from services.notification_service import Milestone
from services.transformer_service import DataTransformer
from tests.factories import CatalogRecordFactory, ConnectionFactory, DEFAULT_MAPPINGS
from tests.fakes import FakeCatalog, FakeTask, RetryRequested

ITEM_GID = "gid://shopify/InventoryItem/77"


def event(available=3, item=77) -> InventoryLevelWebhook:
    return InventoryLevelWebhook(inventory_item_id=item, location_id=1, available=available)


@pytest.fixture
def scheduled():
    return []


@pytest.fixture
def debouncer(memory_cache, scheduled):
    return WebhookDebouncer(memory_cache, lambda *args: scheduled.append(args), window=30)


class TestWebhookModel:
    def test_numeric_ids_become_gids(self):
        payload = event()

        assert payload.inventory_item_gid == ITEM_GID
        assert payload.location_gid == "gid://shopify/Location/1"

    def test_unknown_keys_ignored(self):
        payload = InventoryLevelWebhook(inventory_item_id=1, location_id=2, admin_graphql_api_id="x")

        assert payload.available is None


class TestWebhookDebouncer:
    """Tests for submit() / claim() / release()"""

    def test_first_event_scheduled(self, debouncer, scheduled):
        replaced = debouncer.submit("shop-1", event())

        assert replaced is False
        shop_id, item_id, _, countdown = scheduled[0]
        assert (shop_id, item_id, countdown) == ("shop-1", ITEM_GID, 30)

    def test_burst_keeps_latest_payload(self, debouncer, scheduled):
        """Should let only the newest scheduled run find the payload."""
        # Arrange
        debouncer.submit("shop-1", event(available=3))
        replaced = debouncer.submit("shop-1", event(available=9))
        first_token, latest_token = scheduled[0][2], scheduled[1][2]

        # Act
        stale = debouncer.claim("shop-1", ITEM_GID, first_token)
        latest = debouncer.claim("shop-1", ITEM_GID, latest_token)

        # Assert
        assert replaced is True
        assert stale is None
        assert latest["available"] == 9

    def test_claim_keeps_entry_until_release(self, debouncer, scheduled, memory_cache):
        debouncer.submit("shop-1", event())
        token = scheduled[0][2]

        debouncer.claim("shop-1", ITEM_GID, token)
        assert debouncer.claim("shop-1", ITEM_GID, token) is not None

        debouncer.release("shop-1", ITEM_GID, token)
        assert memory_cache.get(debounce_key("shop-1", ITEM_GID)) is None

    def test_stale_release_keeps_newer_entry(self, debouncer, scheduled):
        debouncer.submit("shop-1", event(available=1))
        debouncer.submit("shop-1", event(available=2))

        debouncer.release("shop-1", ITEM_GID, scheduled[0][2])

        assert debouncer.claim("shop-1", ITEM_GID, scheduled[1][2])["available"] == 2

    def test_items_are_independent(self, debouncer):
        debouncer.submit("shop-1", event(item=1))

        assert debouncer.submit("shop-1", event(item=2)) is False


class TestInventoryWebhookJob:
    """Tests for InventoryWebhookJob.handle()"""

    @pytest.fixture
    def variant(self):
        product = CatalogRecordFactory.create_product(variants=1)
        return product.variants[0].model_copy(update={"inventory_item_id": ITEM_GID, "sku": "OAK-1"})

    @pytest.fixture
    def seeded_sheets(self, fake_sheets, variant):
        transformer = DataTransformer(DEFAULT_MAPPINGS, currency="USD")
        other = CatalogRecordFactory.create_variant("gid://shopify/Product/2", sku="ASH-1")
        fake_sheets.write_range("sheet-abc", "A1:E1", [transformer.header_row()])
        fake_sheets.write_range("sheet-abc", "A2:E3", transformer.to_values(transformer.to_rows([other, variant])))
        fake_sheets.writes.clear()
        return fake_sheets

    def test_rewrites_row_by_sku(self, mock_db, mock_supabase, make_orchestrator, variant, seeded_sheets):
        """Should rewrite the variant's row with the webhook quantity."""
        # Arrange
        mock_supabase.set_table_data("google_sheets_connections", [ConnectionFactory.create()])
        job = InventoryWebhookJob("shop-1", event(available=42), orchestrator=make_orchestrator(FakeCatalog([variant])))

        # Act
        updated = job.handle()

        # Assert
        assert updated is True
        assert [r for r, _ in seeded_sheets.writes] == ["Sheet1!A3:E3"]
        assert seeded_sheets.row(3)[4] == "42"
        runs = mock_supabase.rows("sync_runs")
        assert runs[0]["sync_type"] == "webhook"
        assert runs[0]["status"] == SyncRunStatus.COMPLETED.value
        assert runs[0]["records_processed"] == 1

    def test_not_connected_skips(self, mock_db, mock_supabase, make_orchestrator, variant):
        job = InventoryWebhookJob("shop-1", event(), orchestrator=make_orchestrator(FakeCatalog([variant])))

        assert job.handle() is False
        assert mock_supabase.rows("sync_runs") == []

    def test_row_not_in_sheet(self, mock_db, mock_supabase, make_orchestrator, variant, fake_sheets):
        mock_supabase.set_table_data("google_sheets_connections", [ConnectionFactory.create()])
        job = InventoryWebhookJob("shop-1", event(), orchestrator=make_orchestrator(FakeCatalog([variant])))

        assert job.handle() is False
        assert fake_sheets.writes == []
        assert mock_supabase.rows("sync_runs")[0]["records_processed"] == 0

    def test_unknown_inventory_item(self, mock_db, mock_supabase, make_orchestrator, seeded_sheets):
        mock_supabase.set_table_data("google_sheets_connections", [ConnectionFactory.create()])
        job = InventoryWebhookJob("shop-1", event(item=999), orchestrator=make_orchestrator(FakeCatalog([])))

        assert job.handle() is False
        assert seeded_sheets.writes == []

    def test_continues_given_run(self, mock_db, mock_supabase, make_orchestrator, variant, seeded_sheets):
        """Should finish the run a previous attempt created instead of adding one."""
        # Arrange
        mock_supabase.set_table_data("google_sheets_connections", [ConnectionFactory.create()])
        orchestrator = make_orchestrator(FakeCatalog([variant]))
        run = orchestrator.runs.create("shop-1", SyncType.WEBHOOK)
        job = InventoryWebhookJob("shop-1", event(available=8), orchestrator=orchestrator, run_id=run.id)

        # Act
        job.handle()

        # Assert
        runs = mock_supabase.rows("sync_runs")
        assert [r["id"] for r in runs] == [run.id]
        assert runs[0]["status"] == SyncRunStatus.COMPLETED.value

    def test_failed_marks_run_failed_permanently(self, mock_db, mock_supabase, make_orchestrator, fake_notifier):
        orchestrator = make_orchestrator(FakeCatalog([]))
        run = orchestrator.runs.create("shop-1", SyncType.WEBHOOK)
        job = InventoryWebhookJob("shop-1", event(), orchestrator=orchestrator, run_id=run.id)

        job.failed(RuntimeError("catalog timeout"), 4)

        stored = mock_supabase.rows("sync_runs")[0]
        assert stored["status"] == SyncRunStatus.FAILED.value
        assert stored["error_message"] == "Failed after 4 attempts: catalog timeout"
        assert fake_notifier.events[-1]["milestone"] == Milestone.FAILED_PERMANENTLY
        assert fake_notifier.events[-1]["attempts"] == 4


class TestProcessInventoryWebhookTask:
    """The Celery task body, called directly"""

    def test_superseded_run_exits(self):
        assert tasks.process_inventory_webhook("shop-1", ITEM_GID, "stale") == {"superseded": True}

    def test_runs_job_and_releases(self, monkeypatch):
        handled = []

        class StubJob:
            def __init__(self, shop_id, payload, run_id=None):
                self.run_id = run_id
                handled.append((shop_id, payload.available))

            def handle(self):
                return True

        monkeypatch.setattr(tasks, "InventoryWebhookJob", StubJob)
        tokens = []
        debouncer = WebhookDebouncer(get_cache(), lambda *args: tokens.append(args[2]), window=0)
        debouncer.submit("shop-1", event(available=5))

        result = tasks.process_inventory_webhook("shop-1", ITEM_GID, tokens[0])

        assert result == {"updated": True}
        assert handled == [("shop-1", 5)]
        assert get_cache().get(debounce_key("shop-1", ITEM_GID)) is None


class TestRewriteInventoryRowRetries:
    """Retry behaviour of the task body, driven with FakeTask"""

    @pytest.fixture
    def outage(self, monkeypatch, mock_db, mock_supabase, make_orchestrator):
        """Catalog lookups fail while errors remain in the returned list."""
        mock_supabase.set_table_data("google_sheets_connections", [ConnectionFactory.create()])
        catalog = FakeCatalog([])
        errors = []

        def lookup(inventory_item_id):
            if errors:
                raise errors.pop()
            return None

        catalog.fetch_variant_by_inventory_item = lookup
        orchestrator = make_orchestrator(catalog)
        monkeypatch.setattr(tasks, "InventoryWebhookJob", partial(InventoryWebhookJob, orchestrator=orchestrator))
        return errors

    def test_retry_continues_same_run(self, outage, debouncer, scheduled, mock_supabase):
        """Should record one run for one debounced event across attempts."""
        # Arrange
        outage.append(RuntimeError("catalog timeout"))
        debouncer.submit("shop-1", event())
        token = scheduled[0][2]

        # Act
        with pytest.raises(RetryRequested):
            tasks._rewrite_inventory_row(FakeTask(retries=0), debouncer, "shop-1", ITEM_GID, token)
        result = tasks._rewrite_inventory_row(FakeTask(retries=1), debouncer, "shop-1", ITEM_GID, token)

        # Assert
        assert result == {"updated": False}
        runs = mock_supabase.rows("sync_runs")
        assert len(runs) == 1
        assert runs[0]["status"] == SyncRunStatus.COMPLETED.value

    def test_exhausted_retries_fail_run_permanently(self, outage, debouncer, scheduled, mock_supabase,
                                                    memory_cache, fake_notifier):
        # Arrange
        outage.append(RuntimeError("catalog timeout"))
        debouncer.submit("shop-1", event())
        task = FakeTask(retries=3)

        # Act
        with pytest.raises(RuntimeError):
            tasks._rewrite_inventory_row(task, debouncer, "shop-1", ITEM_GID, scheduled[0][2])

        # Assert
        assert task.retried_with == []
        stored = mock_supabase.rows("sync_runs")[0]
        assert stored["status"] == SyncRunStatus.FAILED.value
        assert stored["error_message"] == "Failed after 4 attempts: catalog timeout"
        assert fake_notifier.milestones()[-1] == Milestone.FAILED_PERMANENTLY
        assert memory_cache.get(debounce_key("shop-1", ITEM_GID)) is None
