from datetime import datetime

from marketplace.extensions import db


class WebhookEventStatus:
    RECEIVED = "received"
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"

    DONE = (PROCESSED, IGNORED)


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False, default="stripe")
    event_id = db.Column(db.String(128), nullable=False, unique=True)
    event_type = db.Column(db.String(64), nullable=False, default="")
    reference = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(32), nullable=False, default=WebhookEventStatus.RECEIVED)
    processed_at = db.Column(db.DateTime, nullable=True)
    request_id = db.Column(db.String(64), nullable=True)
    payload_hash = db.Column(db.String(128), nullable=True)
    error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def is_done(self) -> bool:
        return self.status in WebhookEventStatus.DONE

    def record_outcome(self, status: str, errors: list[str]) -> None:
        self.status = status
        self.processed_at = datetime.utcnow()
        self.error = "; ".join(errors)[:2000] or None
