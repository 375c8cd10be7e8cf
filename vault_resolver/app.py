"""
Flask application exposing the caching secret resolver over a small JSON API.
"""
import logging
import os

from flask import Flask, jsonify, request

from .config import ResolverConfig
from .errors import (
    NoCredentialAvailable,
    NotFound,
    RequestRejected,
    SecretResolutionError,
    Unauthorized,
    is_transient,
)
from .models import SecretReference
from .resolver import CachingResolver
from .rotation import handle_rotation_event

logger = logging.getLogger(__name__)

VALIDATION_EVENT = "Microsoft.EventGrid.SubscriptionValidationEvent"


def _error_status(exc):
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, Unauthorized):
        return 403
    if isinstance(exc, NoCredentialAvailable):
        return 401
    if isinstance(exc, RequestRejected):
        return 400
    if is_transient(exc):
        return 503
    return 500


def _describe(secret):
    return {
        "name": secret.name,
        "value": secret.masked(),
        "version": secret.version,
        "content_type": secret.content_type,
        "expires_at": secret.expires_at.isoformat() if secret.expires_at else None,
        "tags": dict(secret.tags),
    }


def create_app(resolver=None):
    """Create the Flask app around an existing resolver, or one built from the environment."""
    if resolver is None:
        resolver = CachingResolver.from_config(ResolverConfig.from_env())

    app = Flask(__name__)
    app.config["RESOLVER"] = resolver

    @app.errorhandler(SecretResolutionError)
    def resolution_error(e):
        payload = {"error": type(e).__name__, "message": str(e)}
        if e.attempts > 1:
            payload["attempts"] = e.attempts
            payload["elapsed_seconds"] = round(e.elapsed, 3)
        return jsonify(payload), _error_status(e)

    @app.route("/health", methods=["GET"])
    def health():
        """Liveness endpoint with cache counters."""
        return jsonify({"status": "healthy", "cache": resolver.stats()})

    @app.route("/secrets", methods=["GET"])
    def list_secrets():
        """List secret metadata without values."""
        results = []
        for meta in resolver.list():
            results.append({
                "name": meta.name,
                "enabled": meta.enabled,
                "content_type": meta.content_type,
                "expires_at": meta.expires_at.isoformat() if meta.expires_at else None,
                "updated_at": meta.updated_at.isoformat() if meta.updated_at else None,
                "tags": dict(meta.tags),
            })
        return jsonify({"secrets": results, "count": len(results)})

    @app.route("/secrets/<name>", methods=["GET"])
    def get_secret(name):
        """Resolve a secret through the cache; the value is masked."""
        ref = SecretReference(name, request.args.get("version"))
        return jsonify(_describe(resolver.get(ref)))

    @app.route("/secrets/<name>", methods=["POST"])
    def create_version(name):
        """Create a new version of a secret."""
        body = request.get_json(silent=True) or {}
        value = body.get("value")
        if not value:
            return jsonify({"error": "BadRequest", "message": "value is required"}), 400

        secret = resolver.put(
            name,
            value,
            content_type=body.get("content_type", "text/plain"),
            tags=body.get("tags"),
        )
        return jsonify(_describe(secret)), 201

    @app.route("/cache/invalidate", methods=["POST"])
    def invalidate():
        """Invalidate one secret, or the whole cache when no name is given."""
        body = request.get_json(silent=True) or {}
        name = body.get("name")
        if name:
            resolver.invalidate_name(name)
        else:
            resolver.invalidate_all()
        return jsonify({"invalidated": name or "*"})

    @app.route("/cache/stats", methods=["GET"])
    def cache_stats():
        return jsonify(resolver.stats())

    @app.route("/events/rotation", methods=["POST"])
    def rotation_events():
        """Event Grid push endpoint for Key Vault secret events."""
        events = request.get_json(silent=True) or []
        if isinstance(events, dict):
            events = [events]

        invalidated = []
        for event in events:
            # Event Grid sends a handshake before delivering to a new webhook
            if event.get("eventType") == VALIDATION_EVENT:
                code = (event.get("data") or {}).get("validationCode")
                return jsonify({"validationResponse": code})
            name = handle_rotation_event(resolver, event)
            if name is not None:
                invalidated.append(name)

        return jsonify({"invalidated": invalidated})

    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    port = int(os.getenv("PORT", "5000"))
    print(f" * Running on http://localhost:{port}")
    create_app().run(debug=False, host="0.0.0.0", port=port)
