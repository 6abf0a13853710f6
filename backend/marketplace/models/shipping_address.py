from marketplace.extensions import db
from marketplace.models._ids import new_id


class ShippingAddress(db.Model):
    __tablename__ = "shipping_addresses"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    buyer_id = db.Column(db.String(64), db.ForeignKey("profiles.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    line1 = db.Column(db.String(255), nullable=False)
    line2 = db.Column(db.String(255), nullable=True)
    postal_code = db.Column(db.String(32), nullable=False)
    city = db.Column(db.String(120), nullable=False)
    country = db.Column(db.String(120), nullable=False)
