from flask import request

from . import bp
from ..errors import NotFound
from ..extensions import db
from ..model import Notification
from ..services.notification_service import mark_read
from ..utils.decorators import current_user, login_required
from ..utils.api import ok
from ..utils.text import parse_bool


@bp.get("")
@login_required
def get_notifications():
    q = Notification.query.filter_by(user_id=current_user().id)
    if parse_bool(request.args.get("unread")):
        q = q.filter(Notification.is_read.is_(False))
    notes = q.order_by(Notification.created_at.desc(), Notification.id.desc()).all()
    return ok("notifications", {"notifications": [n.as_api() for n in notes]})


@bp.put("/<int:note_id>/read")
@login_required
def mark_as_read(note_id):
    note = db.session.get(Notification, note_id)
    if not note or note.user_id != current_user().id:
        raise NotFound("Notification not found")
    mark_read(note)
    return ok("Marked as read", {"notification": note.as_api()})
