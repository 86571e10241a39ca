"""Domain exceptions raised by stores and services, mapped to JSON responses."""

from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class StudyPairError(Exception):
    """Base class for errors that carry an HTTP status."""

    status_code = 400

    def __init__(self, message: str, payload: dict | None = None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}

    def to_dict(self) -> dict:
        return {**self.payload, "error": self.message}


class ValidationError(StudyPairError):
    status_code = 400


class PermissionDeniedError(StudyPairError):
    status_code = 403


class NotFoundError(StudyPairError):
    status_code = 404


class ConflictError(StudyPairError):
    status_code = 409


class GoneError(StudyPairError):
    status_code = 410


class UpstreamError(StudyPairError):
    status_code = 502


class AIUnavailableError(StudyPairError):
    status_code = 503


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(StudyPairError)
    def _handle_domain_error(exc: StudyPairError):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(413)
    def _handle_too_large(exc):
        return jsonify({"error": "Request payload is too large"}), 413

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return jsonify({"error": exc.description}), exc.code
        logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error"}), 500
