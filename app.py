import logging

from flask import Flask, request, session
from flask_login import LoginManager

from feature_flags import get_feature_context
from models import CRMUser
from routes import register_blueprints
from services.realtime import ChangeFeedPool, LocalChangeFeed, SupabaseChangeFeed
from services.supabase_client import create_user_client, get_supabase_client, set_supabase_client

logger = logging.getLogger(__name__)


def _bearer_token():
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip() or None
    return session.get('access_token')


def create_app(config_object='config.Config', supabase_client=None,
               user_client_factory=None, change_feed_factory=None):
    """
    Build the Flask app.

    Args:
        config_object: Config class or import path
        supabase_client: Client to use instead of one built from the config
        user_client_factory: token -> client bound to that user's JWT
        change_feed_factory: token -> ChangeFeed for notification streams
    """
    app = Flask(__name__)
    app.config.from_object(config_object)

    url = app.config.get('SUPABASE_URL')
    key = app.config.get('SUPABASE_KEY')

    # Initialize extensions
    if supabase_client is None:
        supabase_client = get_supabase_client(url, key)
    else:
        set_supabase_client(supabase_client)
    app.extensions['supabase'] = supabase_client

    if user_client_factory is None:
        def user_client_factory(token):
            return create_user_client(url, key, token)
    app.extensions['supabase_user_client'] = user_client_factory

    if change_feed_factory is None:
        if app.config.get('REALTIME_ENABLED'):
            # One realtime connection per token, dropped when its last stream closes
            change_feed_factory = ChangeFeedPool(
                lambda token: SupabaseChangeFeed(url, key, access_token=token)
            )
        else:
            local_feed = LocalChangeFeed()

            def change_feed_factory(token):
                return local_feed
    app.extensions['change_feed_factory'] = change_feed_factory

    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.request_loader
    def load_user_from_request(req):
        token = _bearer_token()
        if not token:
            return None
        try:
            response = app.extensions['supabase'].auth.get_user(token)
        except Exception as e:
            app.logger.info(f"Rejected access token: {e}")
            return None
        user = getattr(response, 'user', None)
        if user is None:
            return None
        return CRMUser(id=user.id, email=getattr(user, 'email', None), access_token=token)

    app.context_processor(get_feature_context)

    # Register blueprints
    register_blueprints(app)

    return app


if __name__ == '__main__':
    app = create_app()
    app.run(host='0.0.0.0', port=5005, debug=True)
