"""Flask API Blueprints package.

This package contains Flask Blueprint modules for each API domain:
- health: Health check and metadata endpoints
- metrics: Function metrics and cost estimates
"""

# Import blueprints for convenient registration
from apps.flask_api.blueprints.health import health_bp
from apps.flask_api.blueprints.metrics import metrics_bp

__all__ = [
    "health_bp",
    "metrics_bp",
]
