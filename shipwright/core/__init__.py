"""Core pipeline machinery: hashing, caches, tagging, ledger, orchestration."""
