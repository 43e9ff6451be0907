"""HTTP API for the settlement ledger."""
