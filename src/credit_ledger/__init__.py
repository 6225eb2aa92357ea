"""Credit transfer service: accounts, transfers and an append-only ledger."""

__version__ = "1.0.0"
