# hourinbox/helpers/responses.py
"""Standardized API response helpers."""

from flask import jsonify


def api_success(data=None, message=None, status_code=200, **extra):
    """Create a standardized success response.

    Args:
        data: Response data (optional)
        message: Success message (optional)
        status_code: HTTP status code (default: 200)
        **extra: Zusätzliche Top-Level-Felder, z.B. ``invalidate`` für den
            Client-Cache

    Returns:
        Tuple of (JSON response, status code)

    Example:
        return api_success(data={"uid": 12}, invalidate={"scope": "account"})
        # Returns: ({"success": True, "data": {"uid": 12}, "invalidate": {...}}, 200)
    """
    response = {"success": True}

    if data is not None:
        response["data"] = data

    if message:
        response["message"] = message

    for key, value in extra.items():
        if value is not None:
            response[key] = value

    return jsonify(response), status_code


def api_error(message, code=None, status_code=400, details=None):
    """Create a standardized error response.

    Returns:
        Tuple of (JSON response, status code)

    Example:
        return api_error("Message not found", code="NOT_FOUND", status_code=404)
        # Returns: ({"success": False, "error": {"message": "Message not found", "code": "NOT_FOUND"}}, 404)
    """
    error_data = {"message": message}

    if code:
        error_data["code"] = code

    if details:
        error_data["details"] = details

    return jsonify({"success": False, "error": error_data}), status_code
