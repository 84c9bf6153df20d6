"""
HTTP server for the NamespaceLabel admission webhook
"""

# Standard
from http import HTTPStatus
from typing import Optional

# Third Party
from flask import Blueprint, Flask, current_app, jsonify, request

# First Party
import alog

# Local
from . import config
from .admission import NamespaceLabelValidator
from .exceptions import DecodeError, assert_config

log = alog.use_channel("WHOOK")

# Key in the Flask app config holding the validator
VALIDATOR_KEY = "NAMESPACELABEL_VALIDATOR"

health_bp = Blueprint("health", __name__)


@health_bp.route("/healthz", methods=["GET"])
def healthz():
    return jsonify({"status": "ok"})


def validate_namespacelabel():
    """Answer an AdmissionReview for a NamespaceLabel"""
    review = request.get_json(silent=True)
    if not isinstance(review, dict):
        log.warning("Received admission request without a json body")
        return (
            jsonify({"error": "request body must be an AdmissionReview json object"}),
            HTTPStatus.BAD_REQUEST,
        )

    validator = current_app.config[VALIDATOR_KEY]
    try:
        return jsonify(validator.handle(review))
    except DecodeError as err:
        log.warning("Rejecting undecodable admission request: %s", err)
        return jsonify({"error": str(err)}), HTTPStatus.BAD_REQUEST


def create_app(
    validator: NamespaceLabelValidator,
    path: Optional[str] = None,
) -> Flask:
    """Application factory for the webhook server

    Args:
        validator:  NamespaceLabelValidator
            The validator that answers admission requests
        path:  Optional[str]
            The path the API server posts reviews to. Defaults to webhook.path.

    Returns:
        app:  Flask
            The configured application
    """
    path = path or config.webhook.path
    assert_config(path.startswith("/"), f"Invalid webhook path [{path}]")

    app = Flask(__name__)
    app.config[VALIDATOR_KEY] = validator

    admission_bp = Blueprint("admission", __name__)
    admission_bp.add_url_rule(
        path,
        view_func=validate_namespacelabel,
        methods=["POST"],
    )
    app.register_blueprint(admission_bp)
    app.register_blueprint(health_bp)
    log.debug("Serving NamespaceLabel validation on [%s]", path)
    return app


def get_ssl_context():
    """Get the (cert, key) pair to serve with, or None to serve plain http"""
    cert_file = config.webhook.tls_cert_file
    key_file = config.webhook.tls_key_file
    assert_config(
        bool(cert_file) == bool(key_file),
        "webhook.tls_cert_file and webhook.tls_key_file must be set together",
    )
    if cert_file:
        return (cert_file, key_file)
    log.warning("No TLS certificate configured. Serving plain http")
    return None


def run_webhook_server(validator: NamespaceLabelValidator):
    """Serve the webhook until the process is stopped"""
    app = create_app(validator)
    log.info(
        "Starting webhook server on %s:%s", config.webhook.host, config.webhook.port
    )
    app.run(
        host=config.webhook.host,
        port=config.webhook.port,
        ssl_context=get_ssl_context(),
    )
