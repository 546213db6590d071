"""Tests for index reconciliation."""

import pytest
from hypothesis import given, strategies as st

from src.models.index_models import ExistingIndexItem, PageIndexRecord
from src.models.site_models import SiteInfo
from src.services.errors import JobFailedError
from src.services.index_reconciler import IndexReconciler, plan_reconciliation
from src.services.publish_monitor import PublishMonitor


def _record(pageid: str, site: str = "Corp", name: str | None = None) -> PageIndexRecord:
    return PageIndexRecord(
        site=site,
        pageid=pageid,
        pagename=name or f"Page{pageid}",
        pageurl=f"{pageid}.html",
        pagetitle=" ",
        pagedescription=" ",
        keywords=[],
    )


def _existing(item_id: str, pageid: str, site: str = "Corp") -> ExistingIndexItem:
    return ExistingIndexItem(
        id=item_id,
        name=f"{site}Page{pageid}{pageid}",
        type="PageIndex",
        fields={"site": site, "pageid": pageid, "pagename": f"Page{pageid}"},
    )


@pytest.fixture
def site():
    return SiteInfo(
        name="Corp",
        default_language="en-US",
        repository_id="repo-1",
        channel_id="channel-1",
        channel_access_tokens=[{"name": "defaultToken", "value": "chan-token"}],
    )


@pytest.fixture
def reconciler(fake_cms, run_context, site):
    return IndexReconciler(
        fake_cms, run_context, site, "PageIndex", PublishMonitor(fake_cms, poll_interval=0)
    )


class TestPlanReconciliation:
    """Test plan_reconciliation()."""

    def test_create_and_update(self):
        """Test 10 records against 6 existing matches: 4 creates, 6 updates."""
        records = [_record(str(i)) for i in range(10)]
        existing = [_existing(f"item-{i}", str(i)) for i in range(6)]

        plan = plan_reconciliation(records, existing, "Corp")

        assert [r.pageid for r in plan.to_create] == ["6", "7", "8", "9"]
        assert [i.id for i in plan.to_update] == [f"item-{i}" for i in range(6)]
        assert plan.to_remove == []

    def test_update_carries_new_fields(self):
        plan = plan_reconciliation([_record("1", name="Renamed")], [_existing("item-1", "1")], "Corp")
        assert plan.to_update[0].fields["pagename"] == "Renamed"
        assert plan.to_update[0].id == "item-1"

    def test_first_existing_match_wins(self):
        """Test duplicate remote items leave the later one stale."""
        existing = [_existing("item-a", "1"), _existing("item-b", "1")]

        plan = plan_reconciliation([_record("1")], existing, "Corp")

        assert [i.id for i in plan.to_update] == ["item-a"]
        assert [i.id for i in plan.to_remove] == ["item-b"]

    def test_other_sites_never_removed(self):
        existing = [_existing("item-1", "1", site="Other"), _existing("item-2", "2")]

        plan = plan_reconciliation([], existing, "Corp")

        assert [i.id for i in plan.to_remove] == ["item-2"]

    def test_other_site_item_not_claimed(self):
        """Test an item of another site with the same page id is not updated."""
        plan = plan_reconciliation([_record("1")], [_existing("item-1", "1", site="Other")], "Corp")
        assert len(plan.to_create) == 1
        assert plan.to_update == []

    @given(
        record_ids=st.lists(st.integers(min_value=0, max_value=40), unique=True, max_size=30),
        existing_ids=st.lists(st.integers(min_value=0, max_value=40), max_size=30),
    )
    def test_partition_property(self, record_ids, existing_ids):
        """Property: every record is exactly one create or one update."""
        records = [_record(str(i)) for i in record_ids]
        existing = [_existing(f"item-{n}", str(i)) for n, i in enumerate(existing_ids)]

        plan = plan_reconciliation(records, existing, "Corp")

        assert len(plan.to_create) + len(plan.to_update) == len(records)
        updated_ids = [i.id for i in plan.to_update]
        assert len(set(updated_ids)) == len(updated_ids)
        assert {r.pageid for r in plan.to_create}.isdisjoint(i.fields["pageid"] for i in plan.to_update)
        assert set(updated_ids).isdisjoint(i.id for i in plan.to_remove)


class TestIndexReconciler:
    """Test IndexReconciler against the in-memory CMS."""

    @pytest.mark.asyncio
    async def test_fetch_existing_by_type_and_token(self, reconciler, fake_cms, mock_logfire):
        fake_cms.existing = [
            {"id": "item-1", "type": "PageIndex", "fields": {"site": "Corp", "pageid": "1"}},
            {"type": "PageIndex"},
        ]

        items = await reconciler.fetch_existing()

        assert [i.id for i in items] == ["item-1"]
        assert fake_cms.calls[0] == ("query_management_items", ('type eq "PageIndex"', "chan-token"))

    @pytest.mark.asyncio
    async def test_apply_stages_records(self, reconciler, run_context, mock_logfire):
        plan = plan_reconciliation([_record("1"), _record("2")], [_existing("item-2", "2")], "Corp")

        await reconciler.apply(plan)

        assert run_context.content_type == "PageIndex"
        assert run_context.repository_id == "repo-1"
        assert run_context.language == "en-US"
        assert [r.pageid for r in run_context.records_to_create] == ["1"]
        assert [i.id for i in run_context.items_to_update] == ["item-2"]

    @pytest.mark.asyncio
    async def test_creates_complete_before_updates(self, reconciler, fake_cms, mock_logfire):
        """Test every create and its channel association precede the first update."""
        records = [_record(str(i)) for i in range(10)]
        existing = [_existing(f"item-{i}", str(i)) for i in range(6)]

        result = await reconciler.apply(plan_reconciliation(records, existing, "Corp"))

        methods = fake_cms.methods()
        first_update = methods.index("update_item")
        assert fake_cms.count("create_item") == 4
        assert fake_cms.count("update_item") == 6
        assert "create_item" not in methods[first_update:]
        assert "bulk_operation" not in methods[first_update:]
        add_channels = [
            args for name, args in fake_cms.calls if name == "bulk_operation" and args[0] == "addChannels"
        ]
        assert len(add_channels) == 4
        assert sorted(result.created_ids) == [f"new-{i}" for i in range(6, 10)]
        assert result.updated_ids == [f"item-{i}" for i in range(6)]

    @pytest.mark.asyncio
    async def test_create_addresses_staged_index(self, reconciler, fake_cms, mock_logfire):
        await reconciler.apply(plan_reconciliation([_record("1"), _record("2")], [], "Corp"))
        indices = sorted(args[0] for name, args in fake_cms.calls if name == "create_item")
        assert indices == [0, 1]

    @pytest.mark.asyncio
    async def test_stale_items_unpublished_then_removed(self, reconciler, fake_cms, mock_logfire):
        """Test only published stale items are unpublished; all are removed."""
        existing = [_existing("stale-1", "1"), _existing("stale-2", "2")]
        fake_cms.publish_info = {
            "stale-1": [{"channel": "channel-1"}],
            "stale-2": [{"channel": {"id": "channel-9"}}],
        }

        result = await reconciler.apply(plan_reconciliation([], existing, "Corp"))

        bulk = [args for name, args in fake_cms.calls if name == "bulk_operation"]
        assert bulk == [
            ("unpublish", "channel-1", ("stale-1",)),
            ("removeChannels", "channel-1", ("stale-1", "stale-2")),
        ]
        assert result.removed_ids == ["stale-1", "stale-2"]

    @pytest.mark.asyncio
    async def test_nothing_stale(self, reconciler, fake_cms, mock_logfire):
        result = await reconciler.apply(plan_reconciliation([_record("1")], [], "Corp"))
        assert result.removed_ids == []
        assert fake_cms.count("get_publish_info") == 0

    @pytest.mark.asyncio
    async def test_channel_job_failure_aborts(self, reconciler, fake_cms, mock_logfire):
        fake_cms.job_failures = {"job-1": {"error": {"detail": "channel is locked"}}}

        with pytest.raises(JobFailedError, match="channel is locked"):
            await reconciler.apply(plan_reconciliation([_record("1")], [], "Corp"))

        assert fake_cms.count("update_item") == 0
