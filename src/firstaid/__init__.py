"""First Aid Room: on-device emergency contacts core."""

__version__ = "0.1.0"
