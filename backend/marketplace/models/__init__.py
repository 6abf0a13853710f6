from marketplace.models.profile import Profile, ProfileRole
from marketplace.models.listing import Listing, ListingStatus
from marketplace.models.order import Order, OrderStatus
from marketplace.models.shipping_address import ShippingAddress
from marketplace.models.connect_account import ConnectAccount
from marketplace.models.ban import Ban
from marketplace.models.webhook_event import WebhookEvent, WebhookEventStatus

__all__ = [
    "Profile",
    "ProfileRole",
    "Listing",
    "ListingStatus",
    "Order",
    "OrderStatus",
    "ShippingAddress",
    "ConnectAccount",
    "Ban",
    "WebhookEvent",
    "WebhookEventStatus",
]
