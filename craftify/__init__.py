"""
Craftify recipe catalog synchronizer.

This package contains:
- models: Catalog, command and sync-state schemas
- errors: Remote error classification
- connectors: Cloud database and key-value store connectors
- fetcher: Paginated fetch with bounded retries
- cache: Local catalog snapshot
- preferences / recent_searches: Local recent search list
- favorites: Favorites reconciliation and write-through
- store: Observable state container
- sync: The synchronization orchestrator
"""
