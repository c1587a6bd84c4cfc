import logging

import azure.functions as func
from function_app import app
from crm_shared import error_response, json_response, parse_json_body, preflight_response
from services.email_service import email_enabled, send_notification_email
from services.notification_service import create_notification
from shared.db import SessionLocal
from utils.cors import build_cors_headers

logger = logging.getLogger(__name__)


@app.function_name(name="SendNotification")
@app.route(route="send-notification", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def send_notification(req: func.HttpRequest) -> func.HttpResponse:
    """
    Payload: { userId, type, title, message, email?, data? }
    Stores an in-app notification and, when an address is given and Resend
    is configured, mirrors it by email.
    """
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight_response(cors)

    body = parse_json_body(req)
    title = body.get("title")
    message = body.get("message")
    email = body.get("email")

    db = SessionLocal()
    try:
        create_notification(
            db,
            user_id=body.get("userId"),
            notification_type=body.get("type"),
            title=title,
            message=message,
            data=body.get("data") or {},
        )
        db.commit()
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.error("Error sending notification: %s", exc)
        return error_response(str(exc), cors, 500)
    finally:
        db.close()

    if email and email_enabled():
        if not send_notification_email(to_email=email, title=title, message=message):
            logger.warning("Notification email to %s was not delivered", email)

    return json_response({"success": True}, cors)
