"""Store records — the persisted CRM entities the engine reads and writes."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )


class EntityType(str, Enum):
    HEALTH_SYSTEM = "HEALTH_SYSTEM"
    COMPANY = "COMPANY"
    CO_INVESTOR = "CO_INVESTOR"


class CompanyType(str, Enum):
    STARTUP = "STARTUP"
    SPIN_OUT = "SPIN_OUT"
    DENOVO = "DENOVO"


class CompanyPrimaryCategory(str, Enum):
    PATIENT_ACCESS_AND_GROWTH = "PATIENT_ACCESS_AND_GROWTH"
    CARE_DELIVERY_TECH_ENABLED_SERVICES = "CARE_DELIVERY_TECH_ENABLED_SERVICES"
    CLINICAL_WORKFLOW_AND_PRODUCTIVITY = "CLINICAL_WORKFLOW_AND_PRODUCTIVITY"
    REVENUE_CYCLE_AND_FINANCIAL_OPERATIONS = "REVENUE_CYCLE_AND_FINANCIAL_OPERATIONS"
    VALUE_BASED_CARE_AND_POPULATION_HEALTH_ENABLEMENT = "VALUE_BASED_CARE_AND_POPULATION_HEALTH_ENABLEMENT"
    AI_ENABLED_AUTOMATION_AND_DECISION_SUPPORT = "AI_ENABLED_AUTOMATION_AND_DECISION_SUPPORT"
    DATA_PLATFORM_INTEROPERABILITY_AND_INTEGRATION = "DATA_PLATFORM_INTEROPERABILITY_AND_INTEGRATION"
    REMOTE_PATIENT_MONITORING_AND_CONNECTED_DEVICES = "REMOTE_PATIENT_MONITORING_AND_CONNECTED_DEVICES"
    DIAGNOSTICS_IMAGING_AND_TESTING_ENABLEMENT = "DIAGNOSTICS_IMAGING_AND_TESTING_ENABLEMENT"
    PHARMACY_AND_MEDICATION_ENABLEMENT = "PHARMACY_AND_MEDICATION_ENABLEMENT"
    SUPPLY_CHAIN_PROCUREMENT_AND_ASSET_OPERATIONS = "SUPPLY_CHAIN_PROCUREMENT_AND_ASSET_OPERATIONS"
    SECURITY_PRIVACY_AND_COMPLIANCE_INFRASTRUCTURE = "SECURITY_PRIVACY_AND_COMPLIANCE_INFRASTRUCTURE"
    PROVIDER_EXPERIENCE_AND_DEVELOPMENT = "PROVIDER_EXPERIENCE_AND_DEVELOPMENT"
    OTHER = "OTHER"


class LeadSourceType(str, Enum):
    HEALTH_SYSTEM = "HEALTH_SYSTEM"
    OTHER = "OTHER"


class ContactRoleType(str, Enum):
    EXECUTIVE = "EXECUTIVE"
    VENTURE_PARTNER = "VENTURE_PARTNER"
    INVESTOR_PARTNER = "INVESTOR_PARTNER"
    COMPANY_CONTACT = "COMPANY_CONTACT"
    OTHER = "OTHER"


class RelationshipType(str, Enum):
    INVESTOR = "INVESTOR"
    PARTNER = "PARTNER"
    OTHER = "OTHER"


class ResearchStatus(str, Enum):
    DRAFT = "DRAFT"
    QUEUED = "QUEUED"
    COMPLETED = "COMPLETED"


class EntityRecord(CamelModel):
    """Fields shared by health systems, companies and co-investors."""

    id: str
    name: str
    legal_name: Optional[str] = None
    website: Optional[str] = None
    headquarters_city: Optional[str] = None
    headquarters_state: Optional[str] = None
    headquarters_country: Optional[str] = None
    research_status: ResearchStatus = ResearchStatus.DRAFT
    research_notes: Optional[str] = None
    research_updated_at: Optional[datetime] = None


class HealthSystem(EntityRecord):
    is_limited_partner: bool = False
    is_alliance_member: bool = False
    limited_partner_investment_usd: Optional[float] = None


class Company(EntityRecord):
    company_type: CompanyType = CompanyType.STARTUP
    primary_category: CompanyPrimaryCategory = CompanyPrimaryCategory.OTHER
    primary_category_other: Optional[str] = None
    lead_source_type: LeadSourceType = LeadSourceType.OTHER
    lead_source_health_system_id: Optional[str] = None   # FK -> HealthSystem
    lead_source_other: Optional[str] = None
    lead_source_notes: Optional[str] = None
    description: Optional[str] = None


class CoInvestor(EntityRecord):
    is_seed_investor: bool = False
    is_series_a_investor: bool = False
    investment_notes: Optional[str] = None


class Contact(CamelModel):
    id: str
    name: str
    title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    linkedin_url: Optional[str] = None


class ContactLink(CamelModel):
    """A contact attached to a parent entity in a given role."""

    id: str
    contact_id: str
    parent_type: EntityType
    parent_id: str
    role_type: ContactRoleType
    title: Optional[str] = None


class CompanyCoInvestorLink(CamelModel):
    id: str
    company_id: str
    co_investor_id: str
    relationship_type: RelationshipType = RelationshipType.INVESTOR
    notes: Optional[str] = None
    investment_amount_usd: Optional[float] = Field(default=None, ge=0)


class VenturePartner(CamelModel):
    """Ties a co-investor (venture arm) back to its originating health system."""

    id: str
    health_system_id: str
    co_investor_id: str


class ResearchJob(CamelModel):
    id: str
    entity_type: EntityType
    entity_id: str
    status: str = "QUEUED"
    created_at: datetime


RECORD_MODELS = {
    EntityType.HEALTH_SYSTEM: HealthSystem,
    EntityType.COMPANY: Company,
    EntityType.CO_INVESTOR: CoInvestor,
}

# Contact role used when the narrative names none.
DEFAULT_ROLE_BY_PARENT = {
    EntityType.HEALTH_SYSTEM: ContactRoleType.EXECUTIVE,
    EntityType.COMPANY: ContactRoleType.COMPANY_CONTACT,
    EntityType.CO_INVESTOR: ContactRoleType.INVESTOR_PARTNER,
}
