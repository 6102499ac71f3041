#  --- storefront/model/notification.py ---
from ..extensions import db
from ..utils.dates import iso, utcnow


class Notification(db.Model):
    __tablename__ = "notification"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    message = db.Column(db.String(255), nullable=False)
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def as_api(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "message": self.message,
            "is_read": self.is_read,
            "created_at": iso(self.created_at),
        }
