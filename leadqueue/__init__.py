"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints.
"""
from flask import Flask


def create_app():
    """Create and configure the Flask application."""
    from leadqueue.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    # Register blueprints
    from leadqueue.routes.dashboard import bp as dashboard_bp
    from leadqueue.routes.queues import bp as queues_bp
    from leadqueue.routes.dispatch import bp as dispatch_bp
    from leadqueue.routes.jobs import bp as jobs_bp
    from leadqueue.routes.leaks import bp as leaks_bp

    app.register_blueprint(dashboard_bp)
    app.register_blueprint(queues_bp)
    app.register_blueprint(dispatch_bp)
    app.register_blueprint(jobs_bp)
    app.register_blueprint(leaks_bp)

    # Initialize circuit breakers for the eligibility source and Slack
    from leadqueue.extensions import redis_client
    from leadqueue.services.circuit_breaker import init_breakers
    init_breakers(redis_client)

    # One leak monitor handle per process; its state lives in Redis
    from leadqueue.pipeline.manager import _get_queue
    from leadqueue.services.leak_detector import LeakMonitor
    app.extensions['leak_monitor'] = LeakMonitor(redis_client, _get_queue())

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic, no init_db() call.
    import importlib
    for module in ('lead_record', 'callback', 'inbound_call', 'conversion_record', 'lead_transition',
                   'call_contact', 'agent_session', 'job_cursor', 'job_run', 'leak_scan_metric'):
        importlib.import_module(f'leadqueue.models.{module}')

    return app
