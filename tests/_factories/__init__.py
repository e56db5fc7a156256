from .appointment import AppointmentFactory
from .connection import ConnectionFactory

__all__ = [
    "AppointmentFactory",
    "ConnectionFactory",
]
