"""
API package for ContractLens.
"""

from .app import app, get_engine, get_user_id

__all__ = ["app", "get_engine", "get_user_id"]
