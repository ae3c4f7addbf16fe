"""
gardenslots - availability merging and slot computation for a gardening
services marketplace.
"""

__version__ = "0.3.0"
