"""
Gangsheet API routes.

Thin JSON layer over GangsheetService. The tenant comes from the
X-Tenant-Id header; every job lookup is tenant-scoped, so another
tenant's job ids answer 404.

Handles:
- GET    /api/v1/gangsheets                 - List jobs (?status=...)
- POST   /api/v1/gangsheets                 - Create and start a job
- GET    /api/v1/gangsheets/settings        - Tenant default settings
- PUT    /api/v1/gangsheets/settings        - Update tenant defaults
- POST   /api/v1/gangsheets/preview         - Pack without rendering
- GET    /api/v1/gangsheets/<id>            - Job details
- GET    /api/v1/gangsheets/<id>/status     - Progress poll
- GET    /api/v1/gangsheets/<id>/download   - ZIP archive
- POST   /api/v1/gangsheets/<id>/cancel     - Cooperative cancel
- DELETE /api/v1/gangsheets/<id>            - Delete a finished job
"""

from io import BytesIO

import bleach
from flask import Blueprint, current_app, request, send_file

from core.exceptions import (
    ArtifactNotReadyError,
    GangsheetError,
    InvalidInputError,
    JobNotFoundError,
    JobStateError,
    OrderNotFoundError,
    OrderNotPrintableError,
    PackagingError,
    UpstreamFetchError,
)
from logging_config import get_logger
from models.job import JobStatus
from modules.packager import archive_file_name


# Module logger
logger = get_logger(__name__)

gangsheets_bp = Blueprint("gangsheets", __name__, url_prefix="/api/v1/gangsheets")

# Constants
MAX_NAME_LENGTH = 100
MAX_TENANT_LENGTH = 64
TENANT_HEADER = "X-Tenant-Id"


def _sanitize_text(text, max_length: int = None) -> str:
    """Sanitize user input text."""
    if not text:
        return ""
    text = str(text).strip()
    text = bleach.clean(text, tags=[], strip=True)
    if max_length and len(text) > max_length:
        text = text[:max_length]
    return text


def _service():
    return current_app.config["GANGSHEET_SERVICE"]


def _tenant_id() -> str:
    tenant_id = _sanitize_text(request.headers.get(TENANT_HEADER), MAX_TENANT_LENGTH)
    if not tenant_id:
        raise InvalidInputError(f"Missing {TENANT_HEADER} header")
    return tenant_id


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidInputError("Request body must be a JSON object")
    return data


def _quantity_overrides(data: dict) -> dict:
    """
    Read quantity overrides from a request body.

    Accepts {"quantityOverrides": {"<lineId>": 3}} or the list form
    {"products": [{"orderProductId": "<lineId>", "quantity": 3}]}.
    """
    overrides = dict(data.get("quantityOverrides") or {})
    for product in data.get("products") or []:
        if not isinstance(product, dict):
            raise InvalidInputError("Each products entry must be an object")
        line_id = product.get("orderProductId", product.get("lineId"))
        if line_id is None or "quantity" not in product:
            raise InvalidInputError("Each products entry needs orderProductId and quantity")
        overrides[str(line_id)] = product["quantity"]
    return overrides


def _order_ids(data: dict) -> list:
    order_ids = data.get("orderIds")
    if not isinstance(order_ids, list):
        raise InvalidInputError("orderIds must be a list")
    return order_ids


def _settings_payload(data: dict):
    settings = data.get("settings")
    if settings is not None and not isinstance(settings, dict):
        raise InvalidInputError("settings must be an object")
    return settings


# =============================================================================
# ERROR HANDLING
# =============================================================================

def status_code_for(error: GangsheetError) -> int:
    """HTTP status for a service error."""
    if isinstance(error, InvalidInputError):
        return 400
    if isinstance(error, (JobNotFoundError, OrderNotFoundError)):
        return 404
    if isinstance(error, (JobStateError, ArtifactNotReadyError, OrderNotPrintableError)):
        return 409
    if isinstance(error, (UpstreamFetchError, PackagingError)):
        return 502
    return 500


@gangsheets_bp.errorhandler(GangsheetError)
def handle_gangsheet_error(error: GangsheetError):
    status = status_code_for(error)
    if status >= 500:
        logger.error(f"{request.method} {request.path} failed: {error}")
    else:
        logger.info(f"{request.method} {request.path} rejected ({status}): {error.message}")
    return {
        "error": error.message,
        "kind": type(error).__name__,
        "details": error.details,
    }, status


# =============================================================================
# COLLECTION
# =============================================================================

@gangsheets_bp.route("", methods=["GET"])
def list_gangsheets():
    tenant_id = _tenant_id()
    status = None
    status_arg = request.args.get("status")
    if status_arg:
        try:
            status = JobStatus(status_arg.lower())
        except ValueError:
            raise InvalidInputError(f"Unknown status filter: {status_arg}")

    jobs = _service().list_jobs(tenant_id, status)
    return {"gangsheets": [j.to_dict() for j in jobs], "total": len(jobs)}


@gangsheets_bp.route("", methods=["POST"])
def create_gangsheet():
    """
    Create a job and start it in the background.

    Body: {"orderIds": [...], "name": "...", "settings": {...},
           "products": [{"orderProductId": "...", "quantity": 2}]}

    Returns 202 with the job snapshot; poll /<id>/status for progress.
    """
    tenant_id = _tenant_id()
    data = _json_body()
    service = _service()

    job_id = service.create_job(
        tenant_id,
        _order_ids(data),
        name=_sanitize_text(data.get("name"), MAX_NAME_LENGTH) or None,
        settings=_settings_payload(data),
        quantity_overrides=_quantity_overrides(data),
    )
    service.submit_job(job_id)

    logger.info(f"Gangsheet job {job_id[:8]} submitted for tenant {tenant_id}")
    return service.get_status(job_id, tenant_id).to_dict(), 202


@gangsheets_bp.route("/settings", methods=["GET"])
def get_settings():
    return _service().get_default_settings(_tenant_id()).to_dict()


@gangsheets_bp.route("/settings", methods=["PUT"])
def update_settings():
    tenant_id = _tenant_id()
    settings = _service().update_default_settings(tenant_id, _json_body())
    return settings.to_dict()


@gangsheets_bp.route("/preview", methods=["POST"])
def preview_gangsheet():
    """Pack the selected orders and return the layout without rendering."""
    tenant_id = _tenant_id()
    data = _json_body()
    return _service().preview(
        tenant_id,
        _order_ids(data),
        settings=_settings_payload(data),
        quantity_overrides=_quantity_overrides(data),
    )


# =============================================================================
# SINGLE JOB
# =============================================================================

@gangsheets_bp.route("/<job_id>", methods=["GET"])
def get_gangsheet(job_id: str):
    return _service().get_status(job_id, _tenant_id()).to_dict()


@gangsheets_bp.route("/<job_id>/status", methods=["GET"])
def gangsheet_status(job_id: str):
    """Lightweight progress poll."""
    snapshot = _service().get_status(job_id, _tenant_id())
    return {
        "id": snapshot.id,
        "status": snapshot.status.value,
        "currentStep": snapshot.stage.label,
        "progress": snapshot.progress,
        "totalRolls": snapshot.total_rolls,
        "complete": snapshot.is_terminal,
        "error": snapshot.status == JobStatus.FAILED,
        "errorMessage": snapshot.error_message,
    }


@gangsheets_bp.route("/<job_id>/download", methods=["GET"])
def download_gangsheet(job_id: str):
    tenant_id = _tenant_id()
    service = _service()
    snapshot = service.get_status(job_id, tenant_id)
    data = service.get_artifact(job_id, tenant_id)

    return send_file(
        BytesIO(data),
        mimetype="application/zip",
        as_attachment=True,
        download_name=archive_file_name(snapshot.name),
    )


@gangsheets_bp.route("/<job_id>/cancel", methods=["POST"])
def cancel_gangsheet(job_id: str):
    return _service().cancel_job(job_id, _tenant_id()).to_dict()


@gangsheets_bp.route("/<job_id>", methods=["DELETE"])
def delete_gangsheet(job_id: str):
    _service().delete_job(job_id, _tenant_id())
    return "", 204
