"""Pipeline services: identity, correlation, ledger and orchestration."""
