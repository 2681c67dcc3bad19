"""
Model digest: a plain-text snapshot of the store schema for the LLM,
generated from the pydantic record models.
"""

from enum import Enum
from typing import Any, List, Optional, Sequence, Type, Union, get_args, get_origin

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from narrative_engine.models.records import (
    CoInvestor,
    Company,
    CompanyCoInvestorLink,
    Contact,
    ContactLink,
    HealthSystem,
    VenturePartner,
)

DIGEST_MODELS: Sequence[Type[BaseModel]] = (
    HealthSystem,
    Company,
    CoInvestor,
    CompanyCoInvestorLink,
    Contact,
    ContactLink,
    VenturePartner,
)

MODEL_NARRATIVE = "\n".join([
    "HealthSystem, Company and CoInvestor are separate entity tables.",
    "A health system is a provider organization; it may be a limited partner or alliance member of the fund.",
    "A co-investor is an investment firm. A health system's venture arm is a co-investor tied back to the "
    "health system through a VenturePartner record.",
    "A company's lead source is either a linked HealthSystem (leadSourceType HEALTH_SYSTEM with "
    "leadSourceHealthSystemId) or free text (leadSourceType OTHER with leadSourceOther).",
    "There is no company-to-health-system link table; express that relationship as the company lead source.",
    "CompanyCoInvestorLink records that a co-investor invested in or partners with a company.",
    "Contacts are shared people records attached to a health system, company or co-investor through "
    "ContactLink with a role: EXECUTIVE, VENTURE_PARTNER, INVESTOR_PARTNER, COMPANY_CONTACT or OTHER.",
])


def _unwrap_optional(annotation: Any) -> Any:
    if get_origin(annotation) is Union:
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _type_label(annotation: Any) -> str:
    inner = _unwrap_optional(annotation)
    if isinstance(inner, type) and issubclass(inner, Enum):
        return f"{inner.__name__} enum"
    if isinstance(inner, type):
        return {"str": "String", "int": "Int", "float": "Float", "bool": "Boolean"}.get(
            inner.__name__, inner.__name__
        )
    return str(inner)


def build_model_digest(models: Optional[Sequence[Type[BaseModel]]] = None) -> str:
    """One 'Model X' block per model, id first, then fields by name."""
    lines: List[str] = []
    for model in models or DIGEST_MODELS:
        lines.append(f"Model {model.__name__}")
        fields = sorted(model.model_fields.items(), key=lambda item: (item[0] != "id", item[0]))
        for name, info in fields:
            flags = []
            if name == "id":
                flags.append("id")
            flags.append("required" if info.is_required() else "optional")
            lines.append(f"- {to_camel(name)}: {_type_label(info.annotation)} ({', '.join(flags)})")
        lines.append("")
    return "\n".join(lines).strip()
