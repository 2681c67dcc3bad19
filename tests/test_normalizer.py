"""Tests for name cleaning and comparison keys."""

import pytest

from narrative_engine.matching.normalizer import (
    clean_entity_name,
    clean_name_fragment,
    entity_type_label,
    infer_health_system_name_from_introducer,
    infer_introducer_type,
    looks_like_health_system_name,
    normalize_entity_name_for_lookup,
    normalize_for_lookup,
)
from narrative_engine.models.records import EntityType

SAMPLE_NAMES = [
    "a company called \"Vitalize Care\"",
    "  Acme, Inc.  ",
    "the co-investor named Summit Ventures",
    "Mercy Health System",
    "“CarePilot”.",
    "company named company named Duo",
    "",
]


class TestNormalizeForLookup:
    def test_lowercases_and_strips_punctuation(self):
        assert normalize_for_lookup("  Acme, Inc. ") == "acme inc"

    def test_empty_values(self):
        assert normalize_for_lookup(None) == ""
        assert normalize_for_lookup("   ") == ""

    @pytest.mark.parametrize("value", SAMPLE_NAMES)
    def test_idempotent(self, value):
        once = normalize_for_lookup(value)
        assert normalize_for_lookup(once) == once


class TestCleanEntityName:
    def test_strips_quotes_and_trailing_punctuation(self):
        assert clean_name_fragment("\"CarePilot\".") == "CarePilot"

    def test_removes_generic_fillers(self):
        assert clean_entity_name("a company called Vitalize Care", EntityType.COMPANY) == "Vitalize Care"
        assert clean_entity_name("co-investor named Summit Ventures", EntityType.CO_INVESTOR) == "Summit Ventures"

    def test_removes_typed_fillers(self):
        assert clean_entity_name("the health system Mercy", EntityType.HEALTH_SYSTEM) == "Mercy"
        assert clean_entity_name("investor Summit Ventures", EntityType.CO_INVESTOR) == "Summit Ventures"

    def test_typed_fillers_only_apply_to_their_type(self):
        assert clean_entity_name("investor Summit Ventures", EntityType.COMPANY) == "investor Summit Ventures"

    def test_strips_repeated_fillers(self):
        assert clean_entity_name("company named company named Duo", EntityType.COMPANY) == "Duo"

    def test_never_empties_a_name(self):
        assert clean_entity_name("company", EntityType.COMPANY) == "company"

    @pytest.mark.parametrize("entity_type", [None, *EntityType])
    @pytest.mark.parametrize("value", SAMPLE_NAMES)
    def test_idempotent(self, value, entity_type):
        once = clean_entity_name(value, entity_type)
        assert clean_entity_name(once, entity_type) == once

    @pytest.mark.parametrize("entity_type", [None, *EntityType])
    @pytest.mark.parametrize("value", SAMPLE_NAMES)
    def test_lookup_key_idempotent(self, value, entity_type):
        once = normalize_entity_name_for_lookup(value, entity_type)
        assert normalize_entity_name_for_lookup(once, entity_type) == once


class TestEntityLookupKey:
    def test_health_system_suffix_collapses(self):
        key = normalize_entity_name_for_lookup("Mercy Health System", EntityType.HEALTH_SYSTEM)
        assert key == normalize_entity_name_for_lookup("Mercy", EntityType.HEALTH_SYSTEM)

    def test_suffix_kept_for_other_types(self):
        assert normalize_entity_name_for_lookup("Mercy Health System", EntityType.COMPANY) == "mercy health system"

    def test_bare_suffix_is_not_emptied(self):
        assert normalize_entity_name_for_lookup("Health System", EntityType.HEALTH_SYSTEM) == "health system"


class TestIntroducerInference:
    def test_health_vocabulary_means_health_system(self):
        assert looks_like_health_system_name("Acme Health")
        assert infer_introducer_type("Acme Health") == EntityType.HEALTH_SYSTEM

    def test_investor_vocabulary_wins(self):
        assert infer_introducer_type("Mercy Health Ventures") == EntityType.CO_INVESTOR

    def test_defaults_to_co_investor(self):
        assert infer_introducer_type("Summit Partners") == EntityType.CO_INVESTOR

    def test_venture_arm_parent_name(self):
        assert infer_health_system_name_from_introducer("Mercy Ventures") == "Mercy"
        assert infer_health_system_name_from_introducer("the Mercy Innovation Fund") == "Mercy"

    def test_introducer_without_fund_words_is_kept(self):
        assert infer_health_system_name_from_introducer("Acme Health") == "Acme Health"

    def test_labels(self):
        assert entity_type_label(EntityType.HEALTH_SYSTEM) == "health system"
        assert entity_type_label(EntityType.COMPANY) == "company"
        assert entity_type_label(EntityType.CO_INVESTOR) == "co-investor"
