"""HTTP surface of the webhook.

Routes:
- ``POST /mutate``: AdmissionReview in, AdmissionReview out.
- ``GET /health/ready``: 204 once the TLS material has been written.
"""

import logging
from pathlib import Path

from flask import Flask, Response, jsonify, request

from infisical_agent_injector.admission import AdmissionHandler
from infisical_agent_injector.exceptions import AdmissionProtocolError

log = logging.getLogger(__name__)


def create_app(handler: AdmissionHandler, cert_file: Path, key_file: Path) -> Flask:
    """Create the Flask application serving the webhook.

    Args:
        handler: Answers admission reviews.
        cert_file: Serving certificate path, checked by the readiness probe.
        key_file: Serving key path, checked by the readiness probe.

    Returns:
        The configured application.

    """
    app = Flask(__name__)

    @app.route("/mutate", methods=["POST"])
    def mutate() -> Response | tuple[str, int]:
        try:
            review = handler.review(request.get_data(), request.headers.get("Content-Type"))
        except AdmissionProtocolError as err:
            log.warning("error on request: %s", err)
            return str(err), err.status_code
        return jsonify(review)

    @app.route("/health/ready", methods=["GET"])
    def ready() -> tuple[str, int]:
        if cert_file.exists() and key_file.exists():
            return "", 204
        return "TLS certificate not ready", 503

    return app
