"""Sahara programmer loading, packet layouts, device channels and checksums for Qualcomm-based cellular modules."""

__version__ = "0.1.0"