"""Tests for the SQLite entity store."""

import threading

import pytest

from narrative_engine.errors import RecordNotFoundError, StoreError
from narrative_engine.models.records import (
    ContactRoleType,
    EntityType,
    LeadSourceType,
    RelationshipType,
)
from narrative_engine.store.entity_store import EntityStore


@pytest.fixture
def store():
    s = EntityStore(":memory:")
    yield s
    s.close()


class TestEntityRecords:
    def test_create_assigns_prefixed_id(self, store):
        record = store.create(EntityType.HEALTH_SYSTEM, {"name": "Mercy General"})
        assert record.id.startswith("hs_")
        assert record.research_updated_at is not None
        assert store.find_unique(EntityType.HEALTH_SYSTEM, record.id).name == "Mercy General"

    def test_find_many_is_case_insensitive_equality_or_contains(self, store):
        store.create(EntityType.COMPANY, {"name": "CarePilot"})
        store.create(EntityType.COMPANY, {"name": "CarePilot Health"})
        store.create(EntityType.COMPANY, {"name": "Other Co"})

        names = [r.name for r in store.find_many(EntityType.COMPANY, ["carepilot"])]
        assert names == ["CarePilot", "CarePilot Health"]

    def test_find_many_respects_limit(self, store):
        for i in range(5):
            store.create(EntityType.CO_INVESTOR, {"name": f"Summit Fund {i}"})
        assert len(store.find_many(EntityType.CO_INVESTOR, ["summit"], limit=3)) == 3

    def test_find_many_with_blank_names(self, store):
        store.create(EntityType.COMPANY, {"name": "Acme"})
        assert store.find_many(EntityType.COMPANY, ["", "  "]) == []

    def test_entity_tables_are_separate(self, store):
        store.create(EntityType.HEALTH_SYSTEM, {"name": "Acme"})
        assert store.find_many(EntityType.COMPANY, ["Acme"]) == []

    def test_update_applies_patch(self, store):
        record = store.create(EntityType.COMPANY, {"name": "Acme"})
        updated = store.update(EntityType.COMPANY, record.id, {"website": "https://acme.test"})
        assert updated.website == "https://acme.test"
        assert store.find_unique(EntityType.COMPANY, record.id).website == "https://acme.test"

    def test_update_unknown_id_raises(self, store):
        with pytest.raises(RecordNotFoundError):
            store.update(EntityType.COMPANY, "co_missing", {"name": "x"})

    def test_dangling_lead_source_is_rejected(self, store):
        with pytest.raises(StoreError):
            store.create(EntityType.COMPANY, {
                "name": "Acme",
                "lead_source_type": LeadSourceType.HEALTH_SYSTEM,
                "lead_source_health_system_id": "hs_missing",
            })


class TestTransactions:
    def test_rollback_discards_grouped_writes(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.create(EntityType.COMPANY, {"name": "Rolled Back"})
                raise RuntimeError("boom")
        assert store.list_entities(EntityType.COMPANY) == []

    def test_nested_transaction_joins_outer(self, store):
        with store.transaction():
            with store.transaction():
                store.create(EntityType.COMPANY, {"name": "Inner"})
            store.create(EntityType.COMPANY, {"name": "Outer"})
        assert len(store.list_entities(EntityType.COMPANY)) == 2

    def test_other_thread_waits_for_open_transaction(self, store):
        entered = threading.Event()
        release = threading.Event()

        def write_then_roll_back():
            try:
                with store.transaction():
                    store.create(EntityType.COMPANY, {"name": "Rolled Back"})
                    entered.set()
                    release.wait(timeout=5)
                    raise RuntimeError("abort")
            except RuntimeError:
                pass

        first = threading.Thread(target=write_then_roll_back)
        first.start()
        assert entered.wait(timeout=5)

        second = threading.Thread(target=lambda: store.create(EntityType.COMPANY, {"name": "Kept"}))
        second.start()
        second.join(timeout=0.2)
        assert second.is_alive()

        release.set()
        first.join(timeout=5)
        second.join(timeout=5)
        assert [c.name for c in store.list_entities(EntityType.COMPANY)] == ["Kept"]

    def test_concurrent_transactions_do_not_interleave(self, store):
        def create_pair(prefix):
            with store.transaction():
                store.create(EntityType.COMPANY, {"name": f"{prefix} One"})
                store.create(EntityType.COMPANY, {"name": f"{prefix} Two"})

        threads = [threading.Thread(target=create_pair, args=(f"Co {i}",)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        names = [c.name for c in store.list_entities(EntityType.COMPANY)]
        assert len(names) == 16
        for index in range(0, 16, 2):
            assert names[index].endswith("One")
            assert names[index + 1] == names[index].replace("One", "Two")


class TestContactsAndLinks:
    def test_contact_lookup_by_identity(self, store):
        contact = store.create_contact({
            "name": "Jane Doe",
            "email": "jane@mercy.test",
            "linkedin_url": "https://linkedin.com/in/janedoe",
        })
        assert store.find_contact_by_email("jane@mercy.test").id == contact.id
        assert store.find_contact_by_linkedin("https://linkedin.com/in/janedoe").id == contact.id

    def test_contact_link_upsert_is_keyed_by_role(self, store):
        hs = store.create(EntityType.HEALTH_SYSTEM, {"name": "Mercy General"})
        contact = store.create_contact({"name": "Jane Doe"})

        store.upsert_contact_link(contact.id, EntityType.HEALTH_SYSTEM, hs.id, ContactRoleType.EXECUTIVE, "CIO")
        store.upsert_contact_link(contact.id, EntityType.HEALTH_SYSTEM, hs.id, ContactRoleType.EXECUTIVE, "CMIO")

        links = store.list_contact_links(EntityType.HEALTH_SYSTEM, hs.id)
        assert len(links) == 1
        assert links[0].title == "CMIO"

    def test_contact_link_requires_parent(self, store):
        contact = store.create_contact({"name": "Jane Doe"})
        with pytest.raises(StoreError):
            store.upsert_contact_link(
                contact.id, EntityType.COMPANY, "co_missing", ContactRoleType.COMPANY_CONTACT
            )

    def test_company_co_investor_link_updates_in_place(self, store):
        company = store.create(EntityType.COMPANY, {"name": "CarePilot"})
        fund = store.create(EntityType.CO_INVESTOR, {"name": "Summit Ventures"})

        store.upsert_company_co_investor_link(company.id, fund.id, notes="first")
        store.upsert_company_co_investor_link(
            company.id, fund.id, relationship_type=RelationshipType.PARTNER, notes="second"
        )

        links = store.list_company_co_investor_links(company.id)
        assert len(links) == 1
        assert links[0].notes == "second"
        assert links[0].relationship_type == RelationshipType.PARTNER

    def test_venture_partner_lookup(self, store):
        hs = store.create(EntityType.HEALTH_SYSTEM, {"name": "Mercy General"})
        fund = store.create(EntityType.CO_INVESTOR, {"name": "Mercy Ventures"})
        store.add_venture_partner(hs.id, fund.id)
        assert store.find_venture_partner_health_system(fund.id).id == hs.id

    def test_research_jobs(self, store):
        job = store.enqueue_research_job(EntityType.COMPANY, "co_1")
        jobs = store.list_research_jobs()
        assert [j.id for j in jobs] == [job.id]
        assert jobs[0].status == "QUEUED"
