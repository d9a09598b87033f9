from .crm import crm_bp
from .notifications import notifications_bp
from .settings import settings_bp
from .king import king_bp
from .messaging import messaging_bp

def register_blueprints(app):
    app.register_blueprint(crm_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(king_bp)
    app.register_blueprint(messaging_bp)
