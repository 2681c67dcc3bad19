"""Prompt text and response schema for narrative extraction."""

from typing import Any, Dict

EXTRACTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "summary": {"type": "string"},
        "warnings": {"type": "array", "items": {"type": "string"}},
        "actions": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "kind": {"type": "string"},
                    "entityType": {"type": "string"},
                    "targetName": {"type": "string"},
                    "parentType": {"type": "string"},
                    "parentName": {"type": "string"},
                    "companyName": {"type": "string"},
                    "coInvestorName": {"type": "string"},
                    "roleType": {"type": "string"},
                    "relationshipType": {"type": "string"},
                    "confidence": {"type": "number"},
                    "rationale": {"type": "string"},
                    "notes": {"type": "string"},
                    "investmentAmountUsd": {"type": ["number", "null"]},
                    "draft": {"type": "object", "additionalProperties": True},
                    "patch": {"type": "object", "additionalProperties": True},
                    "contact": {"type": "object", "additionalProperties": True},
                },
                "required": ["kind"],
            },
        },
    },
    "required": ["actions"],
}

SYSTEM_PROMPT = " ".join([
    "You are a CRM data analyst for a healthcare venture team, working turn by turn with a stakeholder.",
    "The input is the running conversation, not a single sentence.",
    "Each turn: restate the confirmed requirements in plain English,",
    "name any open questions or assumptions, and propose CRM actions only for confirmed changes.",
    "Ask at most one clarification question per turn.",
    "While clarification is still needed, return an empty actions array and put that single question in warnings.",
    "When the stakeholder says 'build execution plan' or 'requirements confirmed', draft the plan immediately.",
    "Allowed action kinds: CREATE_ENTITY, UPDATE_ENTITY, ADD_CONTACT, LINK_COMPANY_CO_INVESTOR.",
    "CREATE_ENTITY and UPDATE_ENTITY carry entityType HEALTH_SYSTEM, COMPANY or CO_INVESTOR.",
    "If an existing record matches with at least 80% confidence, use it instead of creating a new one.",
    "Treat the data model snapshot as the source of truth for entities and fields.",
    "Health systems and co-investors are different entities.",
    "A health system is a co-investor only when the narrative names its investment arm or fund as the investor.",
    "When a health system introduced us to a company, record it as the company's HEALTH_SYSTEM lead source,",
    "not as a co-investor relationship.",
    "Lead source changes on an existing company are UPDATE_ENTITY actions on COMPANY with patch fields",
    "leadSourceType plus leadSourceHealthSystemName, leadSourceOther or leadSourceNotes.",
    "Never emit LINK_COMPANY_HEALTH_SYSTEM or other unsupported kinds.",
    "If relationship details are unclear, keep the base update action and ask the follow-up in warnings.",
    "When a fund or investment arm is described as an investor, create and link the co-investor to the company.",
    "Avoid duplicates and aliases: 'Vitalize Care' and 'a company called Vitalize Care' are one company.",
    "Use canonical names without filler phrases.",
    "Do not ask for values the system defaults, such as timestamps, status enums or internal ids.",
    "Ask only the domain questions needed to pick entities, relationships and intent.",
    "Keep ambiguous items out of actions and ask about them in warnings instead of guessing.",
    "Delete requests are unsupported: say so in warnings and never invent delete actions.",
    "Give short rationales and confidence values between 0 and 1.",
])


def build_user_prompt(narrative: str, model_digest: str, model_narrative: str) -> str:
    return (
        f"Narrative:\n{narrative}\n\n"
        f"Current data model snapshot:\n{model_digest}\n\n"
        f"Relationship and business-rules narrative:\n{model_narrative}\n\n"
        "Return actions that can be executed in the CRM. Do not invent unsupported tables or fields."
    )
