from datetime import datetime

from marketplace.extensions import db
from marketplace.models._ids import new_id


class ListingStatus:
    ACTIVE = "active"
    SOLD = "sold"
    HIDDEN = "hidden"

    ALL = (ACTIVE, SOLD, HIDDEN)


class Listing(db.Model):
    __tablename__ = "listings"
    __table_args__ = (
        db.CheckConstraint("price_amount > 0", name="ck_listings_price_positive"),
        db.CheckConstraint("status IN ('active', 'sold', 'hidden')", name="ck_listings_status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    seller_id = db.Column(db.String(64), db.ForeignKey("profiles.id"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Minor currency units (ore/cents).
    price_amount = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="DKK")
    images = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(db.String(16), nullable=False, default=ListingStatus.ACTIVE, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "title": self.title,
            "description": self.description,
            "price_amount": int(self.price_amount or 0),
            "currency": self.currency or "DKK",
            "images": list(self.images or []),
            "status": self.status or ListingStatus.ACTIVE,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
