"""
SocialPulse billing core
"""

__version__ = "1.0.0"
