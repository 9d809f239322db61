from ridematch.models.presence import DriverPresence
from ridematch.models.ride import Ride
from ridematch.models.driver_account import DriverAccount

__all__ = ["DriverPresence", "Ride", "DriverAccount"]
