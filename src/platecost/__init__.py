"""Plate Cost - recipe costing and inventory reconciliation engine.

Subpackages:
- models: SQLAlchemy record-store models (units, items, recipes, ledger events)
- services: Costing, ledger, usage reconciliation and on-hand projection
- utils: Configuration, constants and numeric helpers
"""

__version__ = "0.1.0"
