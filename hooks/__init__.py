"""
Hook modules for peer lifecycle events.

Import all hook modules here to trigger registration.
"""

from . import limits_file
