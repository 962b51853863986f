"""
accessguard - authorization decision engine for FastAPI services.
"""

__version__ = "0.1.0"
