"""lumenhub: local hub for BLE and WiFi smart lights and climate units."""

__version__ = "1.0.0"
