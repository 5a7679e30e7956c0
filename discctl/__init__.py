"""
Discctl - Optical Drive Control Service
"""

__version__ = "0.1.0"
