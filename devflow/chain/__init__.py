"""Fix-task chain depth tracking."""

from devflow.chain.tracker import ChainStore, ChainTracker, InMemoryChainStore, PostgresChainStore

__all__ = [
    "ChainStore",
    "ChainTracker",
    "InMemoryChainStore",
    "PostgresChainStore",
]
