"""
Gate Pass Service
Blueprint helpers shared by every API blueprint.
"""

import logging

from flask import Blueprint, request
from werkzeug.exceptions import HTTPException

from gatepass.core.exceptions import GatePassError, ValidationError
from gatepass.utils.errors import E, api_error, error_from_exception

logger = logging.getLogger(__name__)


def json_body() -> dict:
    """Request body as a dict; a non-object body is a ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def register_error_handlers(bp: Blueprint) -> None:
    """Map service exceptions to JSON responses for every route of *bp*."""

    @bp.errorhandler(GatePassError)
    def _handle_service_error(error: GatePassError):
        if error.http_status >= 500:
            logger.warning("%s endpoint=%s: %s", bp.name, request.endpoint, error)
        return error_from_exception(error)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
