"""
LinkedIn autoresponder engine: rule matching and response orchestration.
"""

__version__ = "0.1.0"
