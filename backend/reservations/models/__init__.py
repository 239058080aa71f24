from reservations.models.user import User
from reservations.models.listing import Listing, InventoryUnit
from reservations.models.booking import Booking

__all__ = ["User", "Listing", "InventoryUnit", "Booking"]
