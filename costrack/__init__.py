"""CosTrack on-device activity and gesture learning engine."""

__version__ = "0.1.0"
