from datetime import datetime

from marketplace.extensions import db


class ConnectAccount(db.Model):
    __tablename__ = "connect_accounts"

    user_id = db.Column(db.String(64), db.ForeignKey("profiles.id"), primary_key=True)
    external_account_ref = db.Column(db.String(255), nullable=False, unique=True, index=True)
    charges_enabled = db.Column(db.Boolean, nullable=False, default=False)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
