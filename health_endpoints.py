import azure.functions as func
from function_app import app
from crm_shared import json_response, preflight_response
from utils.cors import build_cors_headers


@app.function_name(name="HealthApi")
@app.route(route="health", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def health_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["GET", "OPTIONS"])
    if req.method == "OPTIONS":
        return preflight_response(cors)
    return json_response({"status": "ok"}, cors)
