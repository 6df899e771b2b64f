"""
staticgen - static snapshot generator for CMS-driven sites.
"""

__version__ = "0.1.0"
