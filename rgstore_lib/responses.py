import uuid
from datetime import datetime

from flask import jsonify


class APIError(Exception):
    """
    An error that maps directly onto a JSON failure response.

    Raise it from a route or helper; the application error handler turns it
    into the standard envelope with the given HTTP status.
    """

    def __init__(self, status: int, code: str, message: str, details=None):
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message
        self.details = details


class ValidationFailed(APIError):
    def __init__(self, details, message="Invalid input data"):
        super().__init__(422, "VALIDATION_ERROR", message, details)


def _stamp(body: dict) -> dict:
    body["timestamp"] = datetime.utcnow().isoformat(timespec="milliseconds") + "Z"
    body["requestId"] = str(uuid.uuid4())
    return body


def api_response(data=None, message=None, status=200):
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return jsonify(_stamp(body)), status


def error_response(status, code, message, details=None):
    body = {"success": False, "error": code, "message": message}
    if details:
        body["details"] = details
    return jsonify(_stamp(body)), status


def pagination(page: int, limit: int, total: int) -> dict:
    total_pages = (total + limit - 1) // limit if total else 0
    return {
        "currentPage": page,
        "totalPages": total_pages,
        "totalItems": total,
        "itemsPerPage": limit,
        "hasNextPage": page < total_pages,
        "hasPreviousPage": page > 1,
    }
