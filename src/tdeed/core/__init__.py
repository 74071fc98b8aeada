"""
tdeed Core Module

Contract-interaction engine for the T-Deed registry including:
- Network registry and ABI loading
- Contract handles over direct-signer and relay execution contexts
- Validator binding and permission resolution
- Transaction execution and operation handlers
"""

__all__ = []
