"""
Flask API for the LinkedIn autoresponder engine.
"""

import logging

from flask import Flask, jsonify, request
from flask_cors import CORS

from autoresponder.config import Config, configure_logging
from autoresponder.errors import (
    ConflictError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from autoresponder.ingest import (
    build_incoming_message,
    normalize_sender_profile,
    outcome_to_dict,
    preview_to_dict,
    rule_to_dict,
)
from autoresponder.orchestrator import AutoresponderEngine, build_engine

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (StoreError, 503),
)


def _error_response(error: Exception, action: str):
    for error_cls, status in _STATUS_BY_ERROR:
        if isinstance(error, error_cls):
            if status >= 500:
                logger.error("[API] %s failed: %s", action, error)
            body = {"error": str(error), "kind": error_cls.__name__}
            field = getattr(error, "field", None)
            if field:
                body["field"] = field
            return jsonify(body), status
    logger.exception("[API] Error during %s", action)
    return jsonify({"error": str(error), "kind": "InternalError"}), 500


def _json_body():
    if not request.is_json:
        raise ValidationError("Request must be JSON")
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _owner_id_arg():
    owner_id = request.args.get("ownerId", "").strip()
    if not owner_id:
        raise ValidationError("Query parameter 'ownerId' is required", field="ownerId")
    return owner_id


def _int_arg(name, default):
    try:
        return int(request.args.get(name, str(default)))
    except ValueError as e:
        raise ValidationError(f"Parameter '{name}' must be an integer", field=name) from e


def _bool_arg(name):
    value = request.args.get(name)
    if value is None or value == "":
        return None
    if value.lower() in ("true", "1"):
        return True
    if value.lower() in ("false", "0"):
        return False
    raise ValidationError(f"Parameter '{name}' must be true or false", field=name)


def create_app(engine: AutoresponderEngine = None) -> Flask:
    app = Flask(__name__)
    CORS(app)  # Allow the dashboard and Chrome extension to make requests

    engine = engine or build_engine()
    app.extensions["autoresponder_engine"] = engine

    @app.route('/health', methods=['GET'])
    def health():
        """Health check endpoint."""
        return jsonify({"status": "healthy", "service": "LinkedIn Autoresponder Engine"}), 200

    @app.route('/messages/incoming', methods=['POST'])
    def process_incoming_message():
        """
        Decide whether to auto-reply to an incoming message.

        Expected JSON input:
        {
            "text": "what's your pricing?",
            "recipientOwnerId": "U1",
            "senderProfile": {"firstName": "Sam", "jobTitle": "CTO", ...}
        }

        Returns:
        {
            "shouldRespond": true,
            "response": "Hi Sam, here's our pricing page.",
            "rule": {...},
            "reasoning": "..."
        }
        """
        try:
            message = build_incoming_message(_json_body())
            outcome = engine.process(message)
            return jsonify(outcome_to_dict(outcome)), 200
        except Exception as e:
            return _error_response(e, "message processing")

    @app.route('/autoresponders', methods=['GET'])
    def list_autoresponders():
        try:
            result = engine.list_rules(
                _owner_id_arg(),
                search=request.args.get("search") or None,
                is_active=_bool_arg("isActive"),
                response_type=request.args.get("responseType") or None,
                sort_by=request.args.get("sortBy") or None,
                sort_order=request.args.get("sortOrder", "asc"),
                page=_int_arg("page", 1),
                limit=_int_arg("limit", 10),
            )
            result["data"] = [rule_to_dict(rule) for rule in result["data"]]
            return jsonify(result), 200
        except Exception as e:
            return _error_response(e, "listing autoresponders")

    @app.route('/autoresponders/stats', methods=['GET'])
    def autoresponder_stats():
        try:
            return jsonify(engine.get_stats(_owner_id_arg())), 200
        except Exception as e:
            return _error_response(e, "computing stats")

    @app.route('/autoresponders', methods=['POST'])
    def create_autoresponder():
        try:
            data = _json_body()
            rule = engine.create_rule(data.get("ownerId"), data)
            return jsonify(rule_to_dict(rule)), 201
        except Exception as e:
            return _error_response(e, "creating autoresponder")

    @app.route('/autoresponders/<rule_id>', methods=['GET'])
    def get_autoresponder(rule_id):
        try:
            return jsonify(rule_to_dict(engine.get_rule(rule_id))), 200
        except Exception as e:
            return _error_response(e, "fetching autoresponder")

    @app.route('/autoresponders/<rule_id>', methods=['PUT'])
    def update_autoresponder(rule_id):
        try:
            rule = engine.update_rule(rule_id, _json_body())
            return jsonify(rule_to_dict(rule)), 200
        except Exception as e:
            return _error_response(e, "updating autoresponder")

    @app.route('/autoresponders/<rule_id>', methods=['DELETE'])
    def delete_autoresponder(rule_id):
        try:
            engine.delete_rule(rule_id)
            return jsonify({"message": "Autoresponder deleted successfully"}), 200
        except Exception as e:
            return _error_response(e, "deleting autoresponder")

    @app.route('/autoresponders/<rule_id>/activate', methods=['POST'])
    def activate_autoresponder(rule_id):
        try:
            return jsonify(rule_to_dict(engine.set_active(rule_id, True))), 200
        except Exception as e:
            return _error_response(e, "activating autoresponder")

    @app.route('/autoresponders/<rule_id>/deactivate', methods=['POST'])
    def deactivate_autoresponder(rule_id):
        try:
            return jsonify(rule_to_dict(engine.set_active(rule_id, False))), 200
        except Exception as e:
            return _error_response(e, "deactivating autoresponder")

    @app.route('/autoresponders/<rule_id>/duplicate', methods=['POST'])
    def duplicate_autoresponder(rule_id):
        try:
            return jsonify(rule_to_dict(engine.duplicate_rule(rule_id))), 201
        except Exception as e:
            return _error_response(e, "duplicating autoresponder")

    @app.route('/autoresponders/<rule_id>/test', methods=['POST'])
    def test_autoresponder(rule_id):
        """
        Preview a rule against a hypothetical message. No analytics, no rate limits.

        Expected JSON input: {"text": "...", "senderProfile": {...}}
        Returns: {"matches": bool, "response"?: str, "reasoning": str}
        """
        try:
            data = _json_body()
            text = data.get("text")
            if not isinstance(text, str):
                raise ValidationError("'text' must be a string", field="text")
            outcome = engine.test_rule(rule_id, text, normalize_sender_profile(data.get("senderProfile")))
            return jsonify(preview_to_dict(outcome)), 200
        except Exception as e:
            return _error_response(e, "testing autoresponder")

    return app


if __name__ == '__main__':
    configure_logging()
    logger.info("Starting LinkedIn Autoresponder Engine on %s:%s", Config.FLASK_HOST, Config.FLASK_PORT)
    logger.info("Default AI provider: %s", Config.DEFAULT_AI_PROVIDER)

    create_app().run(
        host=Config.FLASK_HOST,
        port=Config.FLASK_PORT,
        debug=Config.DEBUG
    )
