from datetime import datetime

from marketplace.extensions import db
from marketplace.models._ids import new_id


class Ban(db.Model):
    __tablename__ = "bans"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(64), db.ForeignKey("profiles.id"), nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)
    banned_by = db.Column(db.String(64), db.ForeignKey("profiles.id"), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
