"""Core configuration, interfaces, events and the composition root.

- Settings: Application configuration
- Interfaces: Contract for the swappable inference engine
- Factory: Builds the engine and the service graph
"""

from .config import Settings, settings
from .factory import (
    AdapterConfig,
    AdapterFactory,
    AppServices,
    build_services,
    create_factory_from_settings,
)

__all__ = [
    # Configuration
    "Settings",
    "settings",
    # Factory
    "AdapterConfig",
    "AdapterFactory",
    "AppServices",
    "build_services",
    "create_factory_from_settings",
]
