"""Request middleware: acting user context."""
from flask import session, g, request, current_app


def load_actor():
    """
    Load the acting user id into g.actor_id.

    Taken from the Flask session (user_id) or from the X-Actor-Id header set
    by the authenticating gateway. None means a system-originated request.
    """
    g.actor_id = None

    raw = session.get('user_id') or request.headers.get('X-Actor-Id')
    if raw in (None, ''):
        return
    try:
        g.actor_id = int(raw)
    except (TypeError, ValueError):
        current_app.logger.warning(f"Ignoring invalid actor id: {raw!r}")
