"""shopledger - deduplicated imports and bank reconciliation for small online shops."""

__version__ = "0.1.0"
