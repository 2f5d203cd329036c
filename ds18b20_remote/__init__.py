"""ds18b20-remote: bridges local 1-wire temperature sensors to a remote controller."""

__version__ = "1.0.0"
