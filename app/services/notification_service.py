"""
Notification sink for workflow events.

notify() is fire-and-forget: it is called after the workflow transaction
has committed and never raises. Channels:

- log line (always)
- Prometheus counter workflow_events_total{event}
- JSON POST to NOTIFY_WEBHOOK_URL (requests)
- email to NOTIFY_EMAIL_TO (Flask-Mail)
"""
import logging
from datetime import datetime, timezone

import requests
from flask import current_app, has_app_context

logger = logging.getLogger(__name__)


def _config(key, default=None):
    if not has_app_context():
        return default
    return current_app.config.get(key, default)


def _post_webhook(url: str, event: str, payload: dict) -> bool:
    body = {
        'event': event,
        'sent_at': datetime.now(timezone.utc).isoformat(),
        'data': payload,
    }
    try:
        response = requests.post(
            url,
            json=body,
            timeout=_config('NOTIFY_WEBHOOK_TIMEOUT', 5),
        )
        response.raise_for_status()
        return True
    except requests.RequestException as e:
        logger.warning(f"[NOTIFY] Webhook failed for {event}: {e}")
        return False


def notify(event: str, payload: dict) -> None:
    """Publish a workflow event. Errors are logged, never raised."""
    logger.info(f"[NOTIFY] {event} {payload}")

    try:
        from app.blueprints.metrics import workflow_events_total
        workflow_events_total.labels(event=event).inc()
    except Exception as e:
        logger.warning(f"[NOTIFY] Failed to record metric for {event}: {e}")

    webhook_url = _config('NOTIFY_WEBHOOK_URL')
    if webhook_url:
        _post_webhook(webhook_url, event, payload)

    email_to = _config('NOTIFY_EMAIL_TO')
    if email_to:
        try:
            from app.services.email_service import send_event_email
            send_event_email(email_to, event, payload)
        except Exception as e:
            logger.warning(f"[NOTIFY] Email channel failed for {event}: {e}")
