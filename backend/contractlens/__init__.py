"""
ContractLens Backend
Contract retrieval, risk insight and grounded question answering over a
user's own contract documents.
"""

__version__ = "1.0.0"
