"""Task entities, the sync engine and board helpers."""
