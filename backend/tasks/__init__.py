"""
Background jobs for the Zammad Discord bridge

Contains the APScheduler jobs:
- Reconciliation passes against the Zammad open-ticket listing
- Zammad health checks
- Ledger pruning
"""
