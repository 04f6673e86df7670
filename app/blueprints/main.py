"""Main blueprint with health check endpoint."""
from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from app.database import get_session

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """
    Health check endpoint that validates database connection.

    Returns:
        200: Healthy (DB connected)
        500: Unhealthy (DB error)
    """
    try:
        row = get_session().execute(text("SELECT 1 as health_check")).fetchone()
        if row and row[0] == 1:
            return jsonify({
                'status': 'healthy',
                'database': 'connected',
            }), 200
        return jsonify({
            'status': 'unhealthy',
            'database': 'error',
            'message': 'Unexpected query result'
        }), 500

    except SQLAlchemyError as e:
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'error': str(e),
        }), 500
