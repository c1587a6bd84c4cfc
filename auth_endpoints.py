import logging
from datetime import datetime, timedelta
from uuid import uuid4

import azure.functions as func
from function_app import app
from crm_shared import error_response, get_client_ip, json_response, parse_json_body, preflight_response
from repository.crm_repo import insert_business
from services.identity_service import (
    WEAK_PIN_MESSAGE,
    IdentityError,
    create_user,
    find_profile_for_bin,
    is_valid_pin_format,
    record_session,
    sign_in_with_password,
    touch_last_login,
    verify_pin,
)
from shared.config import get_session_ttl_hours
from shared.db import Profile, SessionLocal
from utils.cors import build_cors_headers

logger = logging.getLogger(__name__)

DEMO_USER = {
    "email": "demo@concinnity.com",
    "bin": "DEMO123456",
    "password": "demo123",
    "pin": "9173",
    "first_name": "Demo",
    "last_name": "User",
    "business_name": "Demo Business Inc.",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _safe_rollback(db) -> None:
    try:
        db.rollback()
    except Exception:  # pylint: disable=broad-except
        logger.debug("Rollback failed", exc_info=True)


def _registration_error(message: str, cors: dict) -> func.HttpResponse:
    """Translate identity backend errors into the messages the UI shows."""
    if "duplicate" in message or "already" in message:
        return error_response(
            "An account with this email already exists. Please try signing in instead.", cors, 400
        )
    if WEAK_PIN_MESSAGE in message:
        return error_response(
            "PIN is too weak. Avoid sequential numbers (1234), repeated digits (1111), or common patterns.",
            cors,
            400,
        )
    return error_response(message or "Registration failed", cors, 400)


def _demo_credentials() -> dict:
    return {
        "email": DEMO_USER["email"],
        "bin": DEMO_USER["bin"],
        "password": DEMO_USER["password"],
        "pin": DEMO_USER["pin"],
    }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.function_name(name="AuthLogin")
@app.route(route="auth-login", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def auth_login(req: func.HttpRequest) -> func.HttpResponse:
    """
    Payload: { email, bin, password, pin }
    Checks password, then business membership by BIN, then PIN, and issues a
    24 hour session token.
    """
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight_response(cors)

    body = parse_json_body(req)
    email = body.get("email")
    bin_value = body.get("bin")
    password = body.get("password")
    pin = body.get("pin")
    logger.info("Login attempt for: %s (bin %s)", email, bin_value)

    if not email or not bin_value or not password or not pin:
        return error_response("All fields are required", cors, 400)
    if not is_valid_pin_format(str(pin)):
        return error_response("PIN must be 4-6 digits", cors, 400)

    db = SessionLocal()
    try:
        try:
            user = sign_in_with_password(db, email, password)
        except IdentityError as exc:
            logger.info("Auth failed: %s", exc)
            return error_response("Invalid email or password", cors, 401)
        user_id = user.id

        profile = find_profile_for_bin(db, user_id, str(bin_value))
        if not profile:
            logger.info("Profile not found or BIN mismatch for user %s", user_id)
            return error_response("Invalid credentials or business identification", cors, 401)

        try:
            pin_valid = verify_pin(db, user_id, str(pin))
        except IdentityError as exc:
            logger.warning("PIN verification error: %s", exc)
            return error_response("PIN verification failed", cors, 401)
        if not pin_valid:
            logger.info("PIN verification failed for user %s", user_id)
            return error_response("Invalid PIN", cors, 401)

        user_payload = {
            "id": user_id,
            "email": profile.email,
            "first_name": profile.first_name,
            "last_name": profile.last_name,
            "role": profile.role,
        }
        business = profile.business
        business_payload = {"id": business.id, "name": business.business_name, "bin": business.bin}

        try:
            touch_last_login(db, user_id)
            db.commit()
        except Exception as exc:  # pylint: disable=broad-except
            _safe_rollback(db)
            logger.warning("Last login update failed (non-critical): %s", exc)

        session_token = str(uuid4())
        expires_at = datetime.utcnow() + timedelta(hours=get_session_ttl_hours())
        try:
            record_session(
                db,
                user_id=user_id,
                business_id=business_payload["id"],
                token=session_token,
                expires_at=expires_at,
                ip_address=get_client_ip(req),
                user_agent=req.headers.get("user-agent"),
            )
            db.commit()
        except Exception as exc:  # pylint: disable=broad-except
            _safe_rollback(db)
            logger.warning("Session creation failed (non-critical): %s", exc)

        logger.info("Login completed for user %s", user_id)
        return json_response(
            {
                "success": True,
                "user": user_payload,
                "business": business_payload,
                "session": {"token": session_token, "expires_at": expires_at.isoformat() + "Z"},
            },
            cors,
        )
    except Exception as exc:  # pylint: disable=broad-except
        _safe_rollback(db)
        logger.error("Login failed: %s", exc)
        return error_response(f"Login failed: {exc}", cors, 500)
    finally:
        db.close()


@app.function_name(name="AuthRegister")
@app.route(route="auth-register", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def auth_register(req: func.HttpRequest) -> func.HttpResponse:
    """
    Payload: { email, bin, password, pin, firstName, lastName, businessName? }
    """
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight_response(cors)

    body = parse_json_body(req)
    email = body.get("email")
    bin_value = body.get("bin")
    password = body.get("password")
    pin = body.get("pin")
    first_name = body.get("firstName")
    last_name = body.get("lastName")
    business_name = body.get("businessName")
    logger.info("Registration attempt for: %s (bin %s)", email, bin_value)

    if not email or not bin_value or not password or not pin or not first_name or not last_name:
        return error_response("All required fields must be provided", cors, 400)
    if not is_valid_pin_format(str(pin)):
        return error_response("PIN must be 4-6 digits", cors, 400)

    db = SessionLocal()
    try:
        try:
            user = create_user(
                db,
                email=email,
                password=password,
                email_confirm=True,
                user_metadata={
                    "bin": str(bin_value),
                    "pin": str(pin),
                    "first_name": first_name,
                    "last_name": last_name,
                    "business_name": business_name or f"{bin_value} Business",
                },
            )
            user_id = user.id
            db.commit()
        except IdentityError as exc:
            _safe_rollback(db)
            logger.error("User creation failed: %s", exc)
            return _registration_error(str(exc), cors)

        business_id = None
        if bin_value and business_name:
            try:
                business = insert_business(
                    db, bin_value=str(bin_value), business_name=business_name, verification_status="pending"
                )
                business_id = business.id
                db.commit()
            except Exception as exc:  # pylint: disable=broad-except
                _safe_rollback(db)
                business_id = None
                logger.warning("Business creation failed (non-critical): %s", exc)

        return json_response(
            {
                "success": True,
                "message": "Registration successful. You can now sign in.",
                "user_id": user_id,
                "business_id": business_id,
            },
            cors,
        )
    except Exception as exc:  # pylint: disable=broad-except
        _safe_rollback(db)
        logger.error("Registration error: %s", exc)
        return error_response(f"Registration failed: {exc}", cors, 500)
    finally:
        db.close()


@app.function_name(name="CreateDemoUser")
@app.route(route="create-demo-user", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def create_demo_user(req: func.HttpRequest) -> func.HttpResponse:
    """Create the shared demo account once; later calls just return its credentials."""
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight_response(cors)

    db = SessionLocal()
    try:
        existing = db.query(Profile).filter_by(email=DEMO_USER["email"]).first()
        if existing:
            logger.info("Demo user already exists")
            return json_response(
                {"success": True, "message": "Demo user ready", "credentials": _demo_credentials()},
                cors,
            )

        try:
            user = create_user(
                db,
                email=DEMO_USER["email"],
                password=DEMO_USER["password"],
                email_confirm=True,
                user_metadata={
                    "bin": DEMO_USER["bin"],
                    "pin": DEMO_USER["pin"],
                    "first_name": DEMO_USER["first_name"],
                    "last_name": DEMO_USER["last_name"],
                    "business_name": DEMO_USER["business_name"],
                },
            )
            user_id = user.id
            db.commit()
        except IdentityError as exc:
            _safe_rollback(db)
            logger.error("Failed to create demo user: %s", exc)
            return error_response(f"Failed to create demo user: {exc}", cors, 500)

        logger.info("Demo user created: %s", user_id)
        return json_response(
            {
                "success": True,
                "message": "Demo user created successfully",
                "user_id": user_id,
                "credentials": _demo_credentials(),
            },
            cors,
        )
    except Exception as exc:  # pylint: disable=broad-except
        _safe_rollback(db)
        logger.error("Demo user setup failed: %s", exc)
        return error_response(f"Demo user setup failed: {exc}", cors, 500)
    finally:
        db.close()
