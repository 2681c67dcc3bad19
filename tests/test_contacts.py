"""Tests for contact resolution and parent linking."""

import pytest

from narrative_engine.errors import StoreError
from narrative_engine.execution.contacts import (
    link_contact_to_parent,
    normalize_email,
    normalize_linkedin_url,
    parse_name,
    resolve_or_create_contact,
    score_contact_name,
    score_title_match,
)
from narrative_engine.models.actions import NarrativeContactPayload
from narrative_engine.models.records import ContactRoleType, EntityType
from narrative_engine.store.entity_store import EntityStore


@pytest.fixture
def store():
    s = EntityStore(":memory:")
    yield s
    s.close()


def _make_payload(name="Jane Doe", **fields):
    return NarrativeContactPayload(name=name, **fields)


class TestIdentityNormalization:
    def test_linkedin_url(self):
        assert normalize_linkedin_url("www.LinkedIn.com/in/janedoe/") == "https://linkedin.com/in/janedoe"
        assert normalize_linkedin_url("http://www.linkedin.com/in/janedoe?trk=x") == (
            "https://linkedin.com/in/janedoe"
        )
        assert normalize_linkedin_url("  ") is None

    def test_email(self):
        assert normalize_email(" Jane@Mercy.TEST ") == "jane@mercy.test"
        assert normalize_email("not-an-email") is None


class TestNameScoring:
    @pytest.mark.parametrize("incoming,existing,expected", [
        ("Jane Doe", "jane doe", 0.95),
        ("William Smith", "Bill Smith", 0.88),
        ("J. Smith", "John Smith", 0.8),
        ("Bill Smith", "William", 0.74),
        ("Bill", "William", 0.7),
        ("Jane Doe", "John Roe", 0.0),
    ])
    def test_tiers(self, incoming, existing, expected):
        assert score_contact_name(parse_name(incoming), existing) == expected

    def test_title_bonus(self):
        assert score_title_match("Chief Medical Officer", "chief medical officer") == 0.08
        assert score_title_match("Chief Medical Officer", "Chief Nursing Officer") == 0.05
        assert score_title_match("CIO", None) == 0.0


class TestResolveOrCreateContact:
    def test_creates_when_nothing_matches(self, store):
        resolution = resolve_or_create_contact(store, _make_payload(email="Jane@Mercy.test"))
        assert resolution.was_created
        assert resolution.matched_by == "created"
        assert resolution.contact.email == "jane@mercy.test"

    def test_linkedin_identity_wins(self, store):
        existing = store.create_contact({"name": "J. Doe", "linkedin_url": "https://linkedin.com/in/janedoe"})
        resolution = resolve_or_create_contact(
            store, _make_payload(linkedin_url="linkedin.com/in/janedoe/")
        )
        assert resolution.contact.id == existing.id
        assert resolution.matched_by == "linkedin"

    def test_email_identity(self, store):
        existing = store.create_contact({"name": "Janet Doe", "email": "jane@mercy.test"})
        resolution = resolve_or_create_contact(store, _make_payload(email="JANE@mercy.test"))
        assert resolution.contact.id == existing.id
        assert resolution.matched_by == "email"

    def test_nickname_reuses_record_and_fills_gaps(self, store):
        existing = store.create_contact({"name": "William Smith", "title": "CFO"})
        resolution = resolve_or_create_contact(
            store, _make_payload("Bill Smith", title="Chief Financial Officer", phone="555-0100")
        )
        assert resolution.contact.id == existing.id
        assert resolution.matched_by == "name"
        assert resolution.contact.title == "CFO"
        assert resolution.contact.phone == "555-0100"
        assert store.count_contacts() == 1

    def test_weak_name_match_creates_new(self, store):
        store.create_contact({"name": "William"})
        resolution = resolve_or_create_contact(store, _make_payload("Bill Smith"))
        assert resolution.was_created
        assert store.count_contacts() == 2


class TestLinkContactToParent:
    def test_links_with_relationship_title(self, store):
        hs = store.create(EntityType.HEALTH_SYSTEM, {"name": "Mercy General"})
        link = link_contact_to_parent(
            store,
            _make_payload(title="CIO", relationship_title="Innovation sponsor"),
            EntityType.HEALTH_SYSTEM,
            hs.id,
            ContactRoleType.EXECUTIVE,
        )
        assert link.title == "Innovation sponsor"
        assert len(store.list_contact_links(EntityType.HEALTH_SYSTEM, hs.id)) == 1

    def test_failed_link_rolls_back_new_contact(self, store):
        with pytest.raises(StoreError):
            link_contact_to_parent(
                store, _make_payload(), EntityType.COMPANY, "co_missing", ContactRoleType.COMPANY_CONTACT
            )
        assert store.count_contacts() == 0
