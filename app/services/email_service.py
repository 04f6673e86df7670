"""
Email service for workflow notifications.
Uses Flask-Mail for SMTP integration with UTF-8 support.
"""
import json
import logging
from flask import current_app
from flask_mail import Mail, Message

logger = logging.getLogger(__name__)

mail = Mail()

EVENT_SUBJECTS = {
    'order.created': 'Nuevo pedido {order_number}',
    'order.status_changed': 'Pedido {order_number}: {status}',
    'order.stock_reserved': 'Stock reservado para pedido {order_number}',
    'remito.created': 'Remito {remito_number} generado',
    'remito.auto_generated': 'Remito {remito_number} generado automáticamente',
    'remito.status_changed': 'Remito {remito_number}: {status}',
    'delivery_note.created': 'Remito de proveedor {delivery_note_number} recibido',
}


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _mail_enabled() -> bool:
    """
    Check if mail is properly configured and enabled.
    Prevents 500 errors in dev or misconfigured environments.
    """
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def build_subject(event: str, payload: dict) -> str:
    template = EVENT_SUBJECTS.get(event)
    if not template:
        return f"Evento {event}"
    try:
        return template.format(**payload)
    except (KeyError, IndexError):
        return f"Evento {event}"


def send_event_email(to_email: str, event: str, payload: dict) -> bool:
    """
    Send a plain-text notification for a workflow event.

    Returns:
        True if sent (or mail disabled), False on failure
    """
    try:
        if not _mail_enabled():
            logger.info(f"[MAIL DISABLED] Event email skipped for {to_email} ({event})")
            return True  # NO romper el flujo de la app

        body = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
        msg = Message(subject=build_subject(event, payload), recipients=[to_email], body=body)
        mail.send(msg)
        logger.info(f"[EMAIL] ✓ {event} sent to {to_email}")
        return True

    except Exception as e:
        logger.exception(f"[EMAIL] ✗ Failed to send {event} to {to_email}: {e}")
        return False
