"""
REST API for MDAP.
"""

from mdap.api.server import MDAPAPI, create_app

__all__ = [
    "create_app",
    "MDAPAPI",
]
