"""Flask web application for Xero paid-invoice to WooCommerce order automation."""

from __future__ import annotations

import os
import secrets
from datetime import datetime
from functools import wraps

from flask import (
    Flask,
    abort,
    jsonify,
    redirect,
    request,
    session,
    url_for,
)
from dotenv import load_dotenv

load_dotenv()

import logging

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Flask secret key - required for the OAuth state kept in the session
_secret_key = os.getenv("FLASK_SECRET_KEY")
if not _secret_key:
    logger.warning(
        "FLASK_SECRET_KEY not set - using random key. "
        "Sessions will be lost on restart. Set FLASK_SECRET_KEY in production."
    )
    _secret_key = secrets.token_hex(32)
app.secret_key = _secret_key


def services():
    from src.services import get_services

    return get_services()


def format_timestamp(epoch):
    if not epoch:
        return None
    return datetime.fromtimestamp(epoch).strftime("%Y-%m-%d %H:%M:%S")


def provided_admin_token() -> str:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[len("Bearer "):].strip()
    # Browser navigations (authorize) cannot set headers
    return request.headers.get("X-Admin-Token") or request.args.get("token", "")


def require_admin(f):
    """Decorator requiring XERO_ADMIN_TOKEN for operator routes."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from src.xero.config import get_admin_token

        expected = get_admin_token()
        if not expected:
            logger.warning(f"Rejected {request.path}: XERO_ADMIN_TOKEN is not set")
            return jsonify({"error": "Operator routes are disabled. Set XERO_ADMIN_TOKEN."}), 403

        provided = provided_admin_token()
        if not provided or not secrets.compare_digest(provided.encode(), expected.encode()):
            logger.warning(f"Rejected {request.path}: invalid admin token")
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)
    return decorated_function


# =============================================================================
# Health Check & Status
# =============================================================================


@app.route("/health")
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "timestamp": datetime.utcnow().isoformat()})


@app.route("/")
@app.route("/xero/status")
def index():
    """Xero connection status and next scheduled check."""
    svc = services()
    status = svc.token_manager.get_token_status()
    status["next_check"] = format_timestamp(svc.schedule.ensure_scheduled()) or "Not scheduled"
    if request.args.get("connected") == "1":
        status["notice"] = "Successfully connected to Xero"
    return jsonify(status)


# =============================================================================
# OAuth Flow
# =============================================================================


def oauth_redirect_uri() -> str:
    from src.xero.config import get_redirect_uri

    return get_redirect_uri(url_for("xero_callback", _external=True))


@app.route("/xero/authorize")
@require_admin
def xero_authorize():
    """Start OAuth flow - redirect to Xero authorization."""
    from src.xero.auth import get_authorization_url
    from src.xero.config import XeroConfigError

    state = secrets.token_urlsafe(32)
    session["oauth_state"] = state

    record = services().token_store.load()
    try:
        auth_url = get_authorization_url(record.client_id, oauth_redirect_uri(), state)
    except XeroConfigError as e:
        return jsonify({"error": str(e)}), 400
    return redirect(auth_url)


@app.route("/xero/callback")
def xero_callback():
    """Handle OAuth callback from Xero. Failures are terminal."""
    error = request.args.get("error")
    if error:
        abort(400, description=f"OAuth error: {request.args.get('error_description', error)}")

    code = request.args.get("code")
    if not code:
        abort(400, description="OAuth error: No authorization code received")

    expected_state = session.pop("oauth_state", None)
    callback_state = request.args.get("state")
    if not expected_state or callback_state != expected_state:
        abort(400, description="OAuth error: Invalid state parameter")

    result = services().token_manager.complete_authorization(code, oauth_redirect_uri())
    if not result.success:
        logger.error(f"Xero authorization failed: {result.kind}: {result.message}")
        abort(400, description=f"OAuth error: {result.message}")

    return redirect(url_for("index", connected=1))


@app.route("/xero/disconnect", methods=["POST"])
@require_admin
def xero_disconnect():
    """Clear stored tokens and tenant."""
    services().token_manager.disconnect()
    return jsonify({"success": True, "message": "Disconnected from Xero"})


# =============================================================================
# Webhook
# =============================================================================


@app.route("/xero/webhook", methods=["POST"])
def xero_webhook():
    """Receive signed Xero webhook deliveries."""
    from src.xero.webhooks import SIGNATURE_HEADER

    response = services().receiver.handle(
        request.headers.get(SIGNATURE_HEADER),
        request.get_data(),
    )
    return jsonify(response.payload), response.status_code


# =============================================================================
# Manual Operations
# =============================================================================


@app.route("/xero/check", methods=["POST"])
@require_admin
def xero_check():
    """Run the paid-invoice check now."""
    svc = services()
    summary = svc.engine.check_paid_invoices()
    next_run = svc.schedule.mark_run()
    return jsonify({
        "success": True,
        "summary": summary.to_dict(),
        "next_check": format_timestamp(next_run),
    })


@app.route("/xero/test-invoice", methods=["POST"])
@require_admin
def xero_test_invoice():
    """Process an invoice number as if it had just been paid."""
    data = request.get_json(silent=True) or {}
    invoice_number = str(data.get("invoice_number", "")).strip()
    if not invoice_number:
        return jsonify({"error": "invoice_number is required"}), 400

    result = services().processor.process_paid_invoice(invoice_number)
    if not result.success:
        return jsonify({
            "success": False,
            "error": result.kind.value,
            "message": result.message,
        }), 422

    return jsonify({"success": True, "order_id": result.value.id, "status": result.value.status})


@app.route("/xero/logs")
@require_admin
def xero_logs():
    """Most recent activity, newest first."""
    limit = min(request.args.get("limit", 100, type=int), 100)
    entries = services().activity_log.recent(limit)
    return jsonify({"logs": [entry.to_dict() for entry in entries]})


# =============================================================================
# Run Server
# =============================================================================


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    debug = os.getenv("FLASK_DEBUG", "false").lower() == "true"
    app.run(host="0.0.0.0", port=port, debug=debug)
