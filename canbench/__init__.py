"""CAN bus tools: frame lengths, bit timing, bus load, echo testing, gateway rules and a BCM server."""

__version__ = "0.1.0"