"""Access control and voting integrity core for school elections."""

from .config import Settings, load_settings
from .models import AccessLevel, SessionIdentity
from .services import Services, build_services

__version__ = "1.0.0"

__all__ = [
    "AccessLevel",
    "Services",
    "SessionIdentity",
    "Settings",
    "build_services",
    "load_settings",
]
