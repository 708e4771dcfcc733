from .base import Controller, protected
from .imports import ImportController
from .reports import ReportController
from .resources import (
    AssignmentController,
    AxisController,
    PersonnelController,
    ResourceController,
    StopController,
    VehicleController,
)
from .tracking import TrackingController
from .trips import TripController
from .users import UserController

__all__ = [
    "AssignmentController",
    "AxisController",
    "Controller",
    "ImportController",
    "PersonnelController",
    "ReportController",
    "ResourceController",
    "StopController",
    "TrackingController",
    "TripController",
    "UserController",
    "VehicleController",
    "protected",
]
