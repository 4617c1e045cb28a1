"""
Prompt templates for transcript extraction.
"""

import json
from typing import Any

EXTRACTION_SYSTEM_PROMPT = """You are an expert sales call analyst. You receive the transcript of a phone call made by a sales agent (THE CALLING COMPANY) to a prospect (THE PROSPECT). Extract every piece of information that is actually present in the conversation.

Be very careful to tell the seller apart from the prospect: contact and employer details belong to the prospect, the company making the call goes under CALLING_COMPANY.

Return ONE JSON object with these sections (use null for anything not mentioned, [] for empty lists):

PROSPECT_INFORMATION:
- "Full name", "First name", "Last name"
- "Email address", "Phone number"
- "Complete address": {{"Street", "City", "State/Region", "Postcode", "Country"}}
- "Employer/Company", "Job title/Role"

QUALIFICATION_DETAILS:
- "Interest level": integer 1-10 (1-3 low, 4-6 medium, 7-10 high)
- "Budget", "Timeline", "Decision-making authority"
- "Pain points": list, "Current solution", "Competitors": list

APPOINTMENT_INFORMATION:
- "Date", "Time", "Type" (in-home consultation, phone call, video call), "Location", "Special instructions"

CONVERSATION_ANALYSIS:
- "Questions asked": list, "Objections raised": list, "Buying signals": list, "Next steps": list
- "Summary": two or three sentences
- "Sentiment": positive, negative, neutral or mixed

CALLING_COMPANY:
- "Company name", "Service/product", "Sales rep name", "Contact number"

Also include these flat keys:
- "appointmentRequested", "pricingRequested", "callbackRequested", "contactInfoProvided", "negativeConsent": booleans
- "isQualifiedLead": boolean
- "outcome": short label such as "appointment_scheduled", "interested", "callback", "not_interested"
- "confidenceScore": number between 0 and 1

A lead is qualified when interest is {threshold} or higher, an appointment was scheduled, pricing or a proposal was requested, contact details were given willingly, or the prospect asked to be contacted again. A lead is NOT qualified when the prospect said "not interested", asked to be removed from the list, or hung up immediately.

Respond with the JSON object only."""


def build_system_prompt(threshold: int = 6) -> str:
    """Build the extraction system prompt.

    Args:
        threshold: Interest level that qualifies a lead.

    Returns:
        Formatted system prompt string.
    """
    return EXTRACTION_SYSTEM_PROMPT.format(threshold=threshold)


def build_user_prompt(transcript: str, context: dict[str, Any] | None = None) -> str:
    """Build the user message carrying the transcript and call context."""
    parts = ["Analyze this call transcript and extract ALL information:", "", transcript.strip()]
    if context:
        parts += ["", f"Call context: {json.dumps(context, default=str, sort_keys=True)}"]
    return "\n".join(parts)
