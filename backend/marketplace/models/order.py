from datetime import datetime

from marketplace.extensions import db
from marketplace.models._ids import new_id


class OrderStatus:
    REQUIRES_PAYMENT = "requires_payment"
    PAID = "paid"
    SHIPPED = "shipped"
    REFUNDED = "refunded"

    ALL = (REQUIRES_PAYMENT, PAID, SHIPPED, REFUNDED)

    # Statuses settlement may move out of. Orders past `paid` belong to
    # fulfilment and are never rewritten by payment events.
    SETTLEABLE = (REQUIRES_PAYMENT, PAID)


class Order(db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('requires_payment', 'paid', 'shipped', 'refunded')",
            name="ck_orders_status",
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    listing_id = db.Column(db.String(36), db.ForeignKey("listings.id"), nullable=False, index=True)
    buyer_id = db.Column(db.String(64), db.ForeignKey("profiles.id"), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    # Payment-platform payment intent id; settlement matches on this column.
    payment_ref = db.Column(db.String(255), nullable=True, unique=True, index=True)

    status = db.Column(db.String(24), nullable=False, default=OrderStatus.REQUIRES_PAYMENT, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
