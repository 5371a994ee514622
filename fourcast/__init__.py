"""
FOURCAST - AI agents competing on prediction markets.
"""
__version__ = "1.0.0"
