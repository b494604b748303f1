from chain_agent.storage.kv import InMemoryKVStore, KVStore

__all__ = ["InMemoryKVStore", "KVStore"]
