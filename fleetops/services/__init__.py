from .email import EmailDeliveryError, EmailService
from .importer import CsvImporter
from .reports import PlanningReport
from .routing import Point, RouteResult, RoutingClient, RoutingError, haversine_km
from .tracking import TrackingService

__all__ = [
    "CsvImporter",
    "EmailDeliveryError",
    "EmailService",
    "PlanningReport",
    "Point",
    "RouteResult",
    "RoutingClient",
    "RoutingError",
    "TrackingService",
    "haversine_km",
]
