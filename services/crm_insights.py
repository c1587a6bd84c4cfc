from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, List, Optional

from repository.crm_repo import (
    get_business,
    get_contact,
    get_deal,
    list_contacts,
    list_deals,
    list_recent_activities,
)
from services.ai_service import AIResponseError, ai_enabled, call_completion_json

logger = logging.getLogger(__name__)

STAGE_FLOW = {
    "Prospecting": "Qualification",
    "Qualification": "Proposal",
    "Proposal": "Negotiation",
    "Negotiation": "Closed Won",
    "Follow-up": "Proposal",
}
CLOSED_STAGES = {"Closed Won", "Closed Lost"}
STALLED_AFTER_DAYS = 14


def _iso(value: datetime) -> str:
    return value.isoformat() + "Z"


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.utcnow()


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", ""))
    except ValueError:
        return None


def _try_ai(system_prompt: str, user_prompt: str, temperature: float, label: str) -> Any:
    """Return the parsed completion or None when the call or parse fails."""
    try:
        return call_completion_json(system_prompt, user_prompt, temperature=temperature)
    except AIResponseError as exc:
        logger.warning("%s: AI response unusable, using fallback: %s", label, exc)
        return None


def next_stage(current_stage: Optional[str]) -> str:
    return STAGE_FLOW.get(current_stage or "", "Qualification")


# ---------------------------------------------------------------------------
# Activity recommendations
# ---------------------------------------------------------------------------

def fallback_activity_recommendations(context: dict, now: Optional[datetime] = None) -> List[dict]:
    current = _now(now)
    contact = context.get("contact") or {}
    deal = context.get("deal") or {}
    proposal_title = f"Prepare custom proposal for {deal['title']}" if deal.get("title") else "Prepare custom proposal"
    return [
        {
            "type": "follow_up_call",
            "priority": "high" if contact else "medium",
            "title": f"Follow up with {contact.get('first_name') or 'contact'}",
            "description": "Schedule a call to discuss next steps and address any questions",
            "suggestedDate": _iso(current + timedelta(days=2)),
            "reasoning": "Maintaining engagement momentum is crucial for conversion",
            "estimatedDuration": "30 minutes",
        },
        {
            "type": "send_proposal",
            "priority": "medium",
            "title": proposal_title,
            "description": "Create tailored proposal based on discussed requirements",
            "suggestedDate": _iso(current + timedelta(days=3)),
            "reasoning": "Customer has shown qualified interest",
            "estimatedDuration": "2 hours",
        },
    ]


def build_activity_recommendations(
    db,
    business_id: Optional[str],
    contact_id: Optional[str] = None,
    deal_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    context: dict = {}
    contact = get_contact(db, contact_id)
    if contact:
        context["contact"] = contact
    deal = get_deal(db, deal_id)
    if deal:
        context["deal"] = deal
    context["recentActivities"] = list_recent_activities(db, business_id, limit=5)

    if ai_enabled():
        prompt = (
            "Analyze this CRM context and suggest next best actions:\n\n"
            f"Context Data: {_dump(context)}\n\n"
            "Based on the contact/deal information and recent activities, suggest 3-5 specific actions "
            "that would move the sales process forward. Consider:\n"
            "- Contact engagement level\n"
            "- Deal stage and progression\n"
            "- Time since last interaction\n"
            "- Urgency and priority\n\n"
            "Return JSON array with structure:\n"
            '[{"type": "call|email|meeting|proposal|demo|follow_up", "priority": "high|medium|low", '
            '"title": "Action title", "description": "Detailed description", '
            '"suggestedDate": "ISO date string", "reasoning": "Why this action is recommended", '
            '"estimatedDuration": "time estimate"}]'
        )
        recommendations = _try_ai(
            "You are a sales strategy expert. Analyze CRM data and provide actionable next-step "
            "recommendations that will advance sales opportunities. Always return valid JSON.",
            prompt,
            0.4,
            "ai-activity-recommendations",
        )
        if recommendations is not None:
            return {"recommendations": recommendations, "generatedAt": _iso(_now(now))}

    return {
        "recommendations": fallback_activity_recommendations(context, now),
        "generatedAt": _iso(_now(now)),
    }


# ---------------------------------------------------------------------------
# Contact lead scoring
# ---------------------------------------------------------------------------

DEMO_LEAD_SCORES = [
    {
        "contactId": "demo-contact-1",
        "score": 85,
        "reasoning": "High engagement rate with recent email campaigns and website visits",
        "factors": ["Email engagement", "Website activity", "Budget confirmed"],
        "confidence": 92,
    },
    {
        "contactId": "demo-contact-2",
        "score": 72,
        "reasoning": "Moderate engagement with sales team, needs follow-up",
        "factors": ["Sales calls", "Interest shown", "Decision timeline"],
        "confidence": 78,
    },
]


def fallback_lead_scores(contacts: List[dict]) -> List[dict]:
    if not contacts:
        return [dict(item) for item in DEMO_LEAD_SCORES]
    return [
        {
            "contactId": contact["id"],
            "score": max(0, 85 - index * 10),
            "reasoning": (
                "Analysis based on contact profile and interaction history for "
                f"{contact.get('first_name') or 'contact'}"
            ),
            "factors": ["Email engagement", "Profile completeness", "Recent activity"],
            "confidence": min(100, 85 + index * 2),
        }
        for index, contact in enumerate(contacts)
    ]


def build_contact_analysis(db, business_id: Optional[str], now: Optional[datetime] = None) -> dict:
    contacts = list_contacts(db, business_id, limit=10)

    if ai_enabled() and contacts:
        prompt = (
            "Analyze these CRM contacts and provide lead scoring insights:\n"
            f"{_dump(contacts)}\n\n"
            "For each contact, provide:\n"
            "1. A score from 0-100 based on engagement potential\n"
            "2. Brief reasoning for the score\n"
            "3. Key factors influencing the score\n"
            "4. Confidence level (0-100)\n\n"
            "Return a JSON array with this structure:\n"
            '[{"contactId": "contact_id", "score": 85, "reasoning": "explanation", '
            '"factors": ["factor1", "factor2"], "confidence": 92}]'
        )
        lead_scores = _try_ai(
            "You are a CRM analytics expert. Analyze contact data and provide actionable lead scoring "
            "insights in valid JSON format.",
            prompt,
            0.3,
            "ai-contact-analysis",
        )
        if lead_scores is not None:
            return {"leadScores": lead_scores, "analysisDate": _iso(_now(now))}

    return {"leadScores": fallback_lead_scores(contacts), "analysisDate": _iso(_now(now))}


# ---------------------------------------------------------------------------
# Pipeline stage suggestions
# ---------------------------------------------------------------------------

DEMO_PIPELINE_RECOMMENDATIONS = [
    {
        "dealId": "demo-deal-1",
        "currentStage": "Proposal",
        "suggestedStage": "Negotiation",
        "reasoning": (
            "Customer has engaged with proposal content and asked pricing questions, "
            "indicating readiness to negotiate"
        ),
        "confidence": 84,
        "urgency": "high",
    },
    {
        "dealId": "demo-deal-2",
        "currentStage": "Qualification",
        "suggestedStage": "Proposal",
        "reasoning": "Budget confirmed and decision makers identified. Technical requirements discussed.",
        "confidence": 78,
        "urgency": "medium",
    },
]


def fallback_pipeline_recommendations(deals: List[dict]) -> List[dict]:
    if not deals:
        return [dict(item) for item in DEMO_PIPELINE_RECOMMENDATIONS]
    urgencies = ["high", "medium", "low"]
    recommendations = []
    for index, deal in enumerate(deals[:3]):
        stage = deal.get("stage") or "Qualification"
        recommendations.append(
            {
                "dealId": deal["id"],
                "currentStage": stage,
                "suggestedStage": next_stage(stage),
                "reasoning": (
                    f"AI analysis suggests advancing {deal.get('title') or 'this deal'} "
                    "based on current momentum and engagement patterns"
                ),
                "confidence": 78 + index * 5,
                "urgency": urgencies[index],
            }
        )
    return recommendations


def build_pipeline_analysis(db, business_id: Optional[str], now: Optional[datetime] = None) -> dict:
    deals = list_deals(db, business_id, limit=10)

    if ai_enabled() and deals:
        prompt = (
            "Analyze these sales pipeline deals and provide movement recommendations:\n"
            f"{_dump(deals)}\n\n"
            "For each deal, assess if it should move to the next stage based on:\n"
            "- Current stage and typical progression\n"
            "- Deal value and potential\n"
            "- Time in current stage\n"
            "- Any available activity data\n\n"
            "Return JSON array with structure:\n"
            '[{"dealId": "deal_id", "currentStage": "current_stage", "suggestedStage": "next_stage", '
            '"reasoning": "explanation", "confidence": 85, "urgency": "high|medium|low"}]'
        )
        recommendations = _try_ai(
            "You are a sales pipeline expert. Analyze deals and provide actionable stage movement "
            "recommendations in valid JSON format.",
            prompt,
            0.3,
            "ai-pipeline-analysis",
        )
        if recommendations is not None:
            return {"recommendations": recommendations, "analysisDate": _iso(_now(now))}

    return {
        "recommendations": fallback_pipeline_recommendations(deals),
        "analysisDate": _iso(_now(now)),
    }


# ---------------------------------------------------------------------------
# Dashboard insights
# ---------------------------------------------------------------------------

def demo_insights(now: Optional[datetime] = None) -> List[dict]:
    created = _iso(_now(now))
    return [
        {
            "id": "insight-1",
            "type": "trend",
            "title": "Sales Velocity Increasing",
            "description": (
                "Your average deal closure time has decreased by 15% this month, "
                "indicating improved sales efficiency."
            ),
            "impact": "high",
            "data": {"velocity": "+15%", "period": "this month"},
            "createdAt": created,
        },
        {
            "id": "insight-2",
            "type": "prediction",
            "title": "Q4 Revenue Forecast",
            "description": "Based on current pipeline, you're on track to exceed Q4 revenue targets by 8%.",
            "impact": "high",
            "data": {"forecast": "+8%", "confidence": "87%"},
            "createdAt": created,
        },
        {
            "id": "insight-3",
            "type": "recommendation",
            "title": "Follow-up Opportunity",
            "description": "12 leads have been inactive for over 14 days. Consider a re-engagement campaign.",
            "impact": "medium",
            "data": {"inactiveLeads": 12, "days": 14},
            "createdAt": created,
        },
        {
            "id": "insight-4",
            "type": "alert",
            "title": "Deal Risk Alert",
            "description": (
                "3 high-value deals in your pipeline show signs of stalling. Immediate action recommended."
            ),
            "impact": "high",
            "data": {"stalledDeals": 3, "value": "$45,000"},
            "createdAt": created,
        },
    ]


def fallback_dashboard_insights(
    contacts: List[dict],
    deals: List[dict],
    activities: List[dict],
    now: Optional[datetime] = None,
) -> List[dict]:
    """
    Insights computed from the rows that were loaded. When there is nothing
    to summarize the static demo set is returned instead.
    """
    current = _now(now)
    created = _iso(current)
    insights: List[dict] = []

    open_deals = [deal for deal in deals if (deal.get("stage") or "") not in CLOSED_STAGES]
    if deals:
        pipeline_value = sum(float(deal.get("value") or 0) for deal in open_deals)
        insights.append(
            {
                "type": "trend",
                "title": "Open Pipeline Value",
                "description": (
                    f"{len(open_deals)} open deals are worth ${pipeline_value:,.0f} in total."
                ),
                "impact": "high" if pipeline_value > 0 else "low",
                "data": {"openDeals": len(open_deals), "value": round(pipeline_value, 2)},
            }
        )

    stalled_cutoff = current - timedelta(days=STALLED_AFTER_DAYS)
    stalled = [
        deal
        for deal in open_deals
        if (_parse_iso(deal.get("updated_at")) or current) < stalled_cutoff
    ]
    if stalled:
        stalled_value = sum(float(deal.get("value") or 0) for deal in stalled)
        insights.append(
            {
                "type": "alert",
                "title": "Deal Risk Alert",
                "description": (
                    f"{len(stalled)} deals have not moved in over {STALLED_AFTER_DAYS} days. "
                    "Immediate action recommended."
                ),
                "impact": "high",
                "data": {"stalledDeals": len(stalled), "value": round(stalled_value, 2)},
            }
        )

    if contacts:
        engaged_ids = {activity.get("contact_id") for activity in activities if activity.get("contact_id")}
        inactive = [contact for contact in contacts if contact["id"] not in engaged_ids]
        if inactive:
            insights.append(
                {
                    "type": "recommendation",
                    "title": "Follow-up Opportunity",
                    "description": (
                        f"{len(inactive)} contacts have no recent activity. "
                        "Consider a re-engagement campaign."
                    ),
                    "impact": "medium",
                    "data": {"inactiveContacts": len(inactive)},
                }
            )
        else:
            insights.append(
                {
                    "type": "trend",
                    "title": "Contacts Engaged",
                    "description": "Every recent contact has at least one logged activity.",
                    "impact": "low",
                    "data": {"contacts": len(contacts)},
                }
            )

    overdue = [
        activity
        for activity in activities
        if not activity.get("completed")
        and (_parse_iso(activity.get("due_date")) or current) < current
    ]
    if overdue:
        insights.append(
            {
                "type": "alert",
                "title": "Overdue Activities",
                "description": f"{len(overdue)} scheduled activities are past their due date.",
                "impact": "medium",
                "data": {"overdueActivities": len(overdue)},
            }
        )
    elif activities and not insights:
        insights.append(
            {
                "type": "trend",
                "title": "Recent Activity",
                "description": f"{len(activities)} activities were logged recently.",
                "impact": "low",
                "data": {"activities": len(activities)},
            }
        )

    if not insights:
        return demo_insights(now)
    for index, insight in enumerate(insights, start=1):
        insight["id"] = f"insight-{index}"
        insight["createdAt"] = created
    return insights


def build_dashboard_insights(db, business_id: Optional[str], now: Optional[datetime] = None) -> dict:
    contacts = list_contacts(db, business_id, limit=10)
    deals = list_deals(db, business_id, limit=10)
    activities = list_recent_activities(db, business_id, limit=10)

    if ai_enabled() and (contacts or deals or activities):
        context = {"contacts": contacts, "deals": deals, "recentActivities": activities}
        prompt = (
            "Review this CRM snapshot and produce dashboard insights:\n"
            f"{_dump(context)}\n\n"
            "Identify 3-5 insights about trends, forecasts, risks and recommended actions. "
            "Only use the numbers provided.\n\n"
            "Return JSON array with structure:\n"
            '[{"id": "insight-1", "type": "trend|prediction|recommendation|alert", "title": "Short title", '
            '"description": "One or two sentences", "impact": "high|medium|low", "data": {}}]'
        )
        insights = _try_ai(
            "You are a CRM analytics expert. Summarize CRM data into concise dashboard insights in valid "
            "JSON format.",
            prompt,
            0.5,
            "ai-dashboard-insights",
        )
        if insights is not None:
            return {"insights": insights, "generatedAt": _iso(_now(now))}

    return {
        "insights": fallback_dashboard_insights(contacts, deals, activities, now),
        "generatedAt": _iso(_now(now)),
    }


# ---------------------------------------------------------------------------
# Email drafting
# ---------------------------------------------------------------------------

def template_email(business: Optional[dict], contact: Optional[dict], context: Optional[str]) -> dict:
    business_name = (business or {}).get("business_name") or "our team"
    first_name = (contact or {}).get("first_name") or "there"
    return {
        "subject": f"Follow-up from {business_name}",
        "body": (
            f"Hi {first_name},\n\nI wanted to follow up on our recent conversation. "
            f"{context or 'Let me know if you have any questions.'}\n\nBest regards,\n[Your name]"
        ),
        "tone": "professional",
    }


def fallback_email(business: Optional[dict], contact: Optional[dict], context: Optional[str]) -> dict:
    business_name = (business or {}).get("business_name") or "our team"
    first_name = (contact or {}).get("first_name") or "there"
    return {
        "subject": f"Follow-up from {business_name}",
        "body": (
            f"Hi {first_name},\n\nI wanted to follow up on our recent conversation about "
            f"{context or 'your needs'}.\n\nWould you be available for a quick call this week to discuss "
            "next steps?\n\nBest regards,\n[Your name]"
        ),
        "tone": "professional",
        "cta": "Schedule a call",
    }


def build_email_draft(
    db,
    contact_id: Optional[str],
    business_id: Optional[str],
    email_type: Optional[str] = None,
    context: Optional[str] = None,
) -> dict:
    contact = get_contact(db, contact_id)
    business = get_business(db, business_id)

    if not ai_enabled():
        return template_email(business, contact, context)

    contact = contact or {}
    tone = "friendly but professional" if email_type == "cold_outreach" else "warm and professional"
    prompt = (
        f"Generate a personalized {email_type or 'follow-up'} email for:\n\n"
        f"Contact: {contact.get('first_name')} {contact.get('last_name')}\n"
        f"Company: {contact.get('company')}\n"
        f"Context: {context or 'General follow-up'}\n"
        f"Business: {(business or {}).get('business_name')}\n\n"
        "Create a professional, engaging email that:\n"
        "1. Is personalized to the contact\n"
        "2. References the specific context\n"
        "3. Has a clear call-to-action\n"
        f"4. Maintains a {tone} tone\n\n"
        "Return JSON with:\n"
        '{"subject": "compelling subject line", "body": "full email body with proper formatting", '
        '"tone": "professional|friendly|formal", "cta": "main call to action"}'
    )
    draft = _try_ai(
        "You are an expert sales email writer. Create personalized, effective sales emails that drive "
        "engagement and responses. Always return valid JSON.",
        prompt,
        0.7,
        "ai-email-generator",
    )
    if draft is not None:
        return draft
    return fallback_email(business, contact, context)
