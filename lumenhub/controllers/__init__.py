"""Radio and network transports for the lumenhub device hub."""

from .base import Adapter, Peripheral  # noqa: F401
from .bluetooth import BleakAdapter  # noqa: F401
from .mock import MockAdapter  # noqa: F401
from .wifi import WiFiController, WiFiDeviceEntry  # noqa: F401
