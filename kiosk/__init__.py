"""
kiosk-bridge - Kiosk display shell with Home Assistant MQTT integration

This is the root package for kiosk-bridge. It keeps a full-screen browser
running on a small touch display and mirrors the device state to an MQTT
broker as Home Assistant discoverable entities.

Core modules:
- capabilities: Host/session probing that gates which entities exist
- hardware: Display, keyboard, identity and metric probes
- poller: Change detection loop and on-screen keyboard signal watcher
- integration: MQTT discovery publisher and command routing
- window: Browser window control over the Chromium DevTools protocol
"""

__version__ = "1.3.0"
