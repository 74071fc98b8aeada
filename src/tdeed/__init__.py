"""
tdeed - T-Deed contract-interaction engine

Resolves which validator contract governs a tokenized deed, decides whether a
caller may mutate it, and executes reads and writes through either a direct
signer or a relay provider.

Main Components:
- Networks & ABIs: static network registry with bundled contract interfaces
- Execution: direct-signer and relay-provider transports
- Authorization: validator binding and ordered permission resolution
- Operations: trait, validation and metadata handlers
"""

__version__ = "0.1.0"
__author__ = "T-Deed Development Team"

__all__ = []
