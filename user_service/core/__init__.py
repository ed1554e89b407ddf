"""Core domain: claims, role mapping, store, reconciliation and IdP sync.

Nothing in this package depends on Flask; the HTTP layer and the CLI both
build on it.
"""
