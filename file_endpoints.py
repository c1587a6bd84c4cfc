import logging

import azure.functions as func
from function_app import app
from crm_shared import error_response, extract_bearer_token, json_response, parse_json_body, preflight_response
from services.file_service import file_to_dict, save_file
from services.identity_service import IdentityError, get_user_for_session
from shared.db import SessionLocal
from utils.cors import build_cors_headers

logger = logging.getLogger(__name__)


@app.function_name(name="SaveFile")
@app.route(route="save-file", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def save_file_api(req: func.HttpRequest) -> func.HttpResponse:
    """
    Payload: { fileId?, name, content, type }
    Headers: Authorization: Bearer <session token from auth-login>
    """
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight_response(cors)

    token = extract_bearer_token(req)
    if not token:
        return error_response("No authorization header provided", cors, 401)

    db = SessionLocal()
    try:
        try:
            user = get_user_for_session(db, token)
        except IdentityError as exc:
            return error_response(f"Authentication error: {exc}", cors, 401)

        body = parse_json_body(req)
        saved = save_file(
            db,
            user_id=user.id,
            file_id=body.get("fileId"),
            name=body.get("name"),
            content=body.get("content"),
            file_type=body.get("type"),
        )
        payload = file_to_dict(saved)
        db.commit()
        logger.info("File %s saved at version %s", payload["id"], payload["version"])
        return json_response({"success": True, "file": payload}, cors)
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.error("Error saving file: %s", exc)
        return error_response(str(exc), cors, 500)
    finally:
        db.close()
