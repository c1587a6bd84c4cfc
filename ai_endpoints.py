import logging

import azure.functions as func
from function_app import app
from crm_shared import error_response, json_response, parse_json_body, preflight_response
from services.crm_insights import (
    build_activity_recommendations,
    build_contact_analysis,
    build_dashboard_insights,
    build_email_draft,
    build_pipeline_analysis,
)
from shared.db import SessionLocal
from utils.cors import build_cors_headers

logger = logging.getLogger(__name__)


def _run_assist(req: func.HttpRequest, label: str, build) -> func.HttpResponse:
    """
    Shared request flow for the assist handlers: parse the body, open a
    session, hand both to ``build`` and serialize whatever it returns.
    """
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight_response(cors)

    body = parse_json_body(req)
    db = SessionLocal()
    try:
        payload = build(db, body)
        db.commit()
        return json_response(payload, cors)
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.error("%s failed: %s", label, exc)
        return error_response(str(exc), cors, 500)
    finally:
        db.close()


@app.function_name(name="AiActivityRecommendations")
@app.route(route="ai-activity-recommendations", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def ai_activity_recommendations(req: func.HttpRequest) -> func.HttpResponse:
    """
    Payload: { businessId, contactId?, dealId? }
    """
    return _run_assist(
        req,
        "ai-activity-recommendations",
        lambda db, body: build_activity_recommendations(
            db, body.get("businessId"), body.get("contactId"), body.get("dealId")
        ),
    )


@app.function_name(name="AiContactAnalysis")
@app.route(route="ai-contact-analysis", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def ai_contact_analysis(req: func.HttpRequest) -> func.HttpResponse:
    return _run_assist(
        req,
        "ai-contact-analysis",
        lambda db, body: build_contact_analysis(db, body.get("businessId")),
    )


@app.function_name(name="AiDashboardInsights")
@app.route(route="ai-dashboard-insights", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def ai_dashboard_insights(req: func.HttpRequest) -> func.HttpResponse:
    return _run_assist(
        req,
        "ai-dashboard-insights",
        lambda db, body: build_dashboard_insights(db, body.get("businessId")),
    )


@app.function_name(name="AiEmailGenerator")
@app.route(route="ai-email-generator", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def ai_email_generator(req: func.HttpRequest) -> func.HttpResponse:
    """
    Payload: { contactId, businessId, emailType?, context? }
    """
    return _run_assist(
        req,
        "ai-email-generator",
        lambda db, body: build_email_draft(
            db,
            body.get("contactId"),
            body.get("businessId"),
            body.get("emailType"),
            body.get("context"),
        ),
    )


@app.function_name(name="AiPipelineAnalysis")
@app.route(route="ai-pipeline-analysis", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def ai_pipeline_analysis(req: func.HttpRequest) -> func.HttpResponse:
    return _run_assist(
        req,
        "ai-pipeline-analysis",
        lambda db, body: build_pipeline_analysis(db, body.get("businessId")),
    )
