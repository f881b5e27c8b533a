"""
Fabrication Kernel

Shared foundation for the fabrication back-office core:
- Typed, coded exceptions
- Structured JSON logging
- Injectable clocks
- SQLAlchemy persistence for batches and stock transactions
"""

__version__ = "0.1.0"
