"""Narrative actions — the typed intents extracted from analyst text."""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import Field, model_serializer
from pydantic.alias_generators import to_camel

from narrative_engine.models.records import (
    CamelModel,
    CompanyPrimaryCategory,
    CompanyType,
    ContactRoleType,
    EntityType,
    LeadSourceType,
    RelationshipType,
)


class ActionKind(str, Enum):
    CREATE_ENTITY = "CREATE_ENTITY"
    UPDATE_ENTITY = "UPDATE_ENTITY"
    ADD_CONTACT = "ADD_CONTACT"
    LINK_COMPANY_CO_INVESTOR = "LINK_COMPANY_CO_INVESTOR"


class CreateMode(str, Enum):
    USE_EXISTING = "USE_EXISTING"
    CREATE_FROM_WEB = "CREATE_FROM_WEB"
    CREATE_MANUAL = "CREATE_MANUAL"


class NarrativeEntityMatch(CamelModel):
    """A candidate existing record for a name. Recomputed on every hydration."""

    id: str = Field(min_length=1)
    entity_type: EntityType
    name: str = Field(min_length=1)
    website: Optional[str] = None
    headquarters_city: Optional[str] = None
    headquarters_state: Optional[str] = None
    headquarters_country: Optional[str] = None
    confidence: float = Field(ge=0, le=1, default=0.0)
    reason: str = ""


class NarrativeWebCandidate(CamelModel):
    """A candidate entity found by an external search service."""

    name: str = Field(min_length=1)
    website: str = ""
    headquarters_city: str = ""
    headquarters_state: str = ""
    headquarters_country: str = ""
    summary: str = ""
    source_urls: List[str] = []


class NarrativeEntityDraft(CamelModel):
    """Proposed field set for an entity that does not exist yet."""

    name: str = Field(min_length=1)
    legal_name: Optional[str] = None
    website: Optional[str] = None
    headquarters_city: Optional[str] = None
    headquarters_state: Optional[str] = None
    headquarters_country: Optional[str] = None
    research_notes: Optional[str] = None
    is_limited_partner: Optional[bool] = None
    is_alliance_member: Optional[bool] = None
    limited_partner_investment_usd: Optional[float] = Field(default=None, ge=0)
    is_seed_investor: Optional[bool] = None
    is_series_a_investor: Optional[bool] = None
    investment_notes: Optional[str] = None
    company_type: Optional[CompanyType] = None
    primary_category: Optional[CompanyPrimaryCategory] = None
    primary_category_other: Optional[str] = None
    lead_source_type: Optional[LeadSourceType] = None
    lead_source_health_system_id: Optional[str] = None
    lead_source_health_system_name: Optional[str] = None
    lead_source_other: Optional[str] = None
    description: Optional[str] = None


class NarrativeEntityPatch(CamelModel):
    """Proposed field changes for an existing entity. Unset fields are untouched."""

    name: Optional[str] = None
    legal_name: Optional[str] = None
    website: Optional[str] = None
    headquarters_city: Optional[str] = None
    headquarters_state: Optional[str] = None
    headquarters_country: Optional[str] = None
    research_notes: Optional[str] = None
    investment_notes: Optional[str] = None
    description: Optional[str] = None
    lead_source_type: Optional[LeadSourceType] = None
    lead_source_health_system_id: Optional[str] = None
    lead_source_health_system_name: Optional[str] = None
    lead_source_other: Optional[str] = None
    lead_source_notes: Optional[str] = None

    @model_serializer(mode="wrap")
    def _dump_provided_fields(self, handler):
        # An explicit null clears a field; an omitted key leaves it alone.
        data = handler(self)
        unset = set(type(self).model_fields) - self.model_fields_set
        hidden = unset | {to_camel(name) for name in unset}
        return {key: value for key, value in data.items() if key not in hidden}


class NarrativeContactPayload(CamelModel):
    name: str = Field(min_length=1)
    title: Optional[str] = None
    relationship_title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    linkedin_url: Optional[str] = None


class CreateSelection(CamelModel):
    mode: CreateMode = CreateMode.CREATE_FROM_WEB
    existing_id: Optional[str] = None
    web_candidate_index: Optional[int] = Field(default=None, ge=0)


class BaseAction(CamelModel):
    """Envelope shared by every action kind."""

    id: str = Field(min_length=1)                  # Stable within a plan
    include: bool = True
    rationale: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    issues: List[str] = []


class CreateEntityAction(BaseAction):
    kind: Literal["CREATE_ENTITY"] = "CREATE_ENTITY"
    entity_type: EntityType
    draft: NarrativeEntityDraft
    existing_matches: List[NarrativeEntityMatch] = []
    web_candidates: List[NarrativeWebCandidate] = []
    selection: CreateSelection = CreateSelection()


class UpdateEntityAction(BaseAction):
    kind: Literal["UPDATE_ENTITY"] = "UPDATE_ENTITY"
    entity_type: EntityType
    target_name: str = Field(min_length=1)
    patch: NarrativeEntityPatch = NarrativeEntityPatch()
    target_matches: List[NarrativeEntityMatch] = []
    selected_target_id: Optional[str] = None
    linked_create_action_id: Optional[str] = None


class AddContactAction(BaseAction):
    kind: Literal["ADD_CONTACT"] = "ADD_CONTACT"
    parent_type: EntityType
    parent_name: str = Field(min_length=1)
    role_type: Optional[ContactRoleType] = None    # Defaulted by parent type during hydration
    contact: NarrativeContactPayload
    parent_matches: List[NarrativeEntityMatch] = []
    selected_parent_id: Optional[str] = None
    linked_create_action_id: Optional[str] = None


class LinkCompanyCoInvestorAction(BaseAction):
    kind: Literal["LINK_COMPANY_CO_INVESTOR"] = "LINK_COMPANY_CO_INVESTOR"
    company_name: str = Field(min_length=1)
    co_investor_name: str = Field(min_length=1)
    relationship_type: RelationshipType = RelationshipType.INVESTOR
    notes: Optional[str] = None
    investment_amount_usd: Optional[float] = Field(default=None, ge=0)
    company_matches: List[NarrativeEntityMatch] = []
    co_investor_matches: List[NarrativeEntityMatch] = []
    selected_company_id: Optional[str] = None
    selected_co_investor_id: Optional[str] = None
    company_create_action_id: Optional[str] = None
    co_investor_create_action_id: Optional[str] = None


NarrativeAction = Annotated[
    Union[
        CreateEntityAction,
        UpdateEntityAction,
        AddContactAction,
        LinkCompanyCoInvestorAction,
    ],
    Field(discriminator="kind"),
]
