from __future__ import annotations

from typing import List, Optional

from crm_shared import format_dt
from shared.db import Activity, Business, Contact, Deal


def contact_to_dict(contact: Contact) -> dict:
    return {
        "id": contact.id,
        "business_id": contact.business_id,
        "first_name": contact.first_name,
        "last_name": contact.last_name,
        "email": contact.email,
        "phone": contact.phone,
        "company": contact.company,
        "status": contact.status,
        "lead_score": contact.lead_score,
        "notes": contact.notes,
        "created_at": format_dt(contact.created_at),
        "updated_at": format_dt(contact.updated_at),
    }


def deal_to_dict(deal: Deal) -> dict:
    return {
        "id": deal.id,
        "business_id": deal.business_id,
        "contact_id": deal.contact_id,
        "title": deal.title,
        "value": deal.value,
        "stage": deal.stage,
        "probability": deal.probability,
        "expected_close_date": format_dt(deal.expected_close_date),
        "created_at": format_dt(deal.created_at),
        "updated_at": format_dt(deal.updated_at),
    }


def activity_to_dict(activity: Activity) -> dict:
    return {
        "id": activity.id,
        "business_id": activity.business_id,
        "contact_id": activity.contact_id,
        "deal_id": activity.deal_id,
        "type": activity.type,
        "subject": activity.subject,
        "description": activity.description,
        "completed": bool(activity.completed),
        "due_date": format_dt(activity.due_date),
        "created_at": format_dt(activity.created_at),
    }


def business_to_dict(business: Business) -> dict:
    return {
        "id": business.id,
        "bin": business.bin,
        "business_name": business.business_name,
        "verification_status": business.verification_status,
    }


def get_contact(db, contact_id: Optional[str]) -> Optional[dict]:
    if not contact_id:
        return None
    contact = db.query(Contact).filter_by(id=str(contact_id)).one_or_none()
    return contact_to_dict(contact) if contact else None


def get_deal(db, deal_id: Optional[str]) -> Optional[dict]:
    if not deal_id:
        return None
    deal = db.query(Deal).filter_by(id=str(deal_id)).one_or_none()
    return deal_to_dict(deal) if deal else None


def get_business(db, business_id: Optional[str]) -> Optional[dict]:
    if not business_id:
        return None
    business = db.query(Business).filter_by(id=str(business_id)).one_or_none()
    return business_to_dict(business) if business else None


def list_contacts(db, business_id: Optional[str], limit: int = 10) -> List[dict]:
    if not business_id:
        return []
    rows = (
        db.query(Contact)
        .filter(Contact.business_id == str(business_id))
        .order_by(Contact.created_at.asc())
        .limit(limit)
        .all()
    )
    return [contact_to_dict(row) for row in rows]


def list_deals(db, business_id: Optional[str], limit: int = 10) -> List[dict]:
    if not business_id:
        return []
    rows = (
        db.query(Deal)
        .filter(Deal.business_id == str(business_id))
        .order_by(Deal.created_at.asc())
        .limit(limit)
        .all()
    )
    return [deal_to_dict(row) for row in rows]


def list_recent_activities(db, business_id: Optional[str], limit: int = 5) -> List[dict]:
    if not business_id:
        return []
    rows = (
        db.query(Activity)
        .filter(Activity.business_id == str(business_id))
        .order_by(Activity.created_at.desc())
        .limit(limit)
        .all()
    )
    return [activity_to_dict(row) for row in rows]


def insert_business(db, *, bin_value: str, business_name: str, verification_status: str = "unverified") -> Business:
    business = Business(bin=bin_value, business_name=business_name, verification_status=verification_status)
    db.add(business)
    db.flush()
    return business
