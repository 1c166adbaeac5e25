"""
Meeting scheduler core: availability, slot generation and booking storage.
"""

__version__ = "1.0.0"
