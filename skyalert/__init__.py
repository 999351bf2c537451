"""SkyAlert - adaptive flight polling and change alerts."""

__version__ = "1.0.0"
