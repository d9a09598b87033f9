import json

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context
from flask_login import login_required, current_user

from services.exceptions import NotificationError
from services.notification_feed import NotificationFeed, NotificationScope
from services.supabase_client import request_client

notifications_bp = Blueprint('notifications', __name__, url_prefix='/api/notifications')

# Seconds between keep-alive comments on the event stream
STREAM_HEARTBEAT = 25


def build_feed(scope: NotificationScope, kinds=None, live: bool = False) -> NotificationFeed:
    """
    Build a feed bound to the request client.

    One-shot endpoints call load(). Only live feeds (live=True) get a change
    feed, and only they may open() a subscription.
    """
    change_feed = None
    if live:
        change_feed = current_app.extensions['change_feed_factory'](getattr(current_user, 'access_token', None))
    return NotificationFeed(
        request_client(),
        change_feed,
        scope,
        kinds=kinds,
        limit=current_app.config.get('NOTIFICATION_FEED_LIMIT', 50),
        mark_read_attempts=current_app.config.get('NOTIFICATION_MARK_READ_ATTEMPTS', 2),
    )


def _kinds():
    kinds = request.args.get('kinds')
    return [k for k in kinds.split(',') if k] if kinds else None


def _user_scope():
    return NotificationScope.for_user(current_user.id)


def feed_response(feed: NotificationFeed):
    status = 502 if feed.error else 200
    return jsonify({'success': feed.error is None, **feed.to_dict()}), status


def mark_read_response(feed: NotificationFeed, notification_id: str):
    try:
        changed = feed.mark_as_read(notification_id)
    except NotificationError as e:
        return jsonify({
            'success': False,
            'error': str(e),
            'notification_id': e.notification_id,
            'unread_count': feed.unread_count,
        }), 502
    return jsonify({'success': True, 'changed': changed, 'unread_count': feed.unread_count})


def mark_all_read_response(feed: NotificationFeed):
    try:
        changed = feed.mark_all_as_read()
    except NotificationError as e:
        return jsonify({'success': False, 'error': str(e), 'unread_count': feed.unread_count}), 502
    return jsonify({'success': True, 'changed': changed, 'unread_count': feed.unread_count})


def stream_response(feed: NotificationFeed):
    """
    Server-sent events: one 'snapshot' event, then one 'notification' event
    per insert. The feed is closed when the client disconnects.
    """
    def generate():
        try:
            yield f"event: snapshot\ndata: {json.dumps(feed.to_dict())}\n\n"
            while feed.is_open:
                added = feed.pump(timeout=STREAM_HEARTBEAT)
                if not added:
                    yield ": keep-alive\n\n"
                    continue
                for notification in reversed(added):
                    payload = {'notification': notification.to_dict(), 'unread_count': feed.unread_count}
                    yield f"event: notification\ndata: {json.dumps(payload)}\n\n"
        finally:
            feed.close()

    return Response(stream_with_context(generate()), mimetype='text/event-stream',
                    headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'})


# =============================================================================
# USER NOTIFICATIONS
# =============================================================================

@notifications_bp.route('', methods=['GET'])
@login_required
def list_notifications():
    return feed_response(build_feed(_user_scope(), kinds=_kinds()).load())


@notifications_bp.route('/<notification_id>/read', methods=['POST'])
@login_required
def mark_read(notification_id):
    return mark_read_response(build_feed(_user_scope()).load(), notification_id)


@notifications_bp.route('/read-all', methods=['POST'])
@login_required
def mark_all_read():
    return mark_all_read_response(build_feed(_user_scope(), kinds=_kinds()).load())


@notifications_bp.route('/stream')
@login_required
def stream():
    return stream_response(build_feed(_user_scope(), kinds=_kinds(), live=True).open())
