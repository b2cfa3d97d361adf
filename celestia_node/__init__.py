"""Header stores, a header syncer, a JSON-RPC client and JSON serializers for Celestia nodes."""

__version__ = "0.1.0"

__all__ = ["rpc", "serializers", "sqlite_store", "store", "sync_init", "syncer", "utils"]