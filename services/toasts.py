"""
User-visible confirmations for service mutations.

Services report success/failure through a toaster instead of calling
flask.flash() directly, so they also run outside a request (jobs, tests).
Inside a request every toast is kept on g.toasts, so JSON endpoints can
return them. Page requests also get them flashed.
"""

import logging

from flask import flash, g, has_request_context, request

logger = logging.getLogger(__name__)


def _wants_json() -> bool:
    return request.is_json or request.accept_mimetypes.best == 'application/json'


def request_toasts() -> list:
    """Toasts emitted during the current request, oldest first."""
    if not has_request_context():
        return []
    return list(g.get('toasts', []))


def toast_text(title: str, description: str = None) -> str:
    return f"{title} : {description}" if description else title


class FlashToaster:
    """Records toasts on the request (flashing them for pages), logs them otherwise."""

    def success(self, title: str, description: str = None):
        self._emit('success', title, description)

    def info(self, title: str, description: str = None):
        self._emit('info', title, description)

    def error(self, title: str, description: str = None):
        self._emit('error', title, description)

    def _emit(self, category: str, title: str, description: str = None):
        text = toast_text(title, description)
        if has_request_context():
            g.setdefault('toasts', []).append({
                'category': category,
                'title': title,
                'description': description,
            })
            if not _wants_json():
                flash(text, category)
        elif category == 'error':
            logger.warning(text)
        else:
            logger.info(text)


default_toaster = FlashToaster()
