"""
Configuration management for the trie tools.
"""
import json
import os
import logging
from dataclasses import dataclass, asdict

from mpt.db import MemoryDB
from mpt.nodes import INLINE_THRESHOLD

HASH_ALGORITHM = "keccak-256"
STORAGE_BACKENDS = ("memory",)


@dataclass
class TrieConfig:
    """Trie parameters. The hash algorithm is fixed; other values are rejected."""
    hash_algorithm: str = HASH_ALGORITHM

    def __post_init__(self):
        if self.hash_algorithm != HASH_ALGORITHM:
            raise ValueError(f"Unsupported hash algorithm: {self.hash_algorithm}")

    @property
    def inline_threshold(self) -> int:
        """Encodings shorter than this are embedded in their parent."""
        return INLINE_THRESHOLD


@dataclass
class StorageConfig:
    """Node store configuration."""
    backend: str = "memory"

    def __post_init__(self):
        if self.backend not in STORAGE_BACKENDS:
            raise ValueError(f"Unsupported storage backend: {self.backend}")

    def open_store(self, name: str = "memory") -> MemoryDB:
        """Open a node store for the configured backend."""
        return MemoryDB(name=name)


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    def apply(self):
        """Configure the root logger."""
        logging.basicConfig(level=getattr(logging, self.level.upper(), logging.INFO), format=self.format)


@dataclass
class MonitoringConfig:
    """Metrics configuration."""
    enabled: bool = False
    namespace: str = "mpt"


@dataclass
class ToolConfig:
    """Proof tool configuration."""
    sample_count: int = 3
    binary_bundles: bool = False


@dataclass
class Config:
    """Main configuration."""
    trie: TrieConfig
    storage: StorageConfig
    logging: LoggingConfig
    monitoring: MonitoringConfig
    tool: ToolConfig

    @classmethod
    def default(cls) -> 'Config':
        """Create default configuration."""
        return cls(
            trie=TrieConfig(),
            storage=StorageConfig(),
            logging=LoggingConfig(),
            monitoring=MonitoringConfig(),
            tool=ToolConfig(),
        )

    @classmethod
    def from_file(cls, path: str) -> 'Config':
        """Load configuration from JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)

        return cls(
            trie=TrieConfig(**data.get('trie', {})),
            storage=StorageConfig(**data.get('storage', {})),
            logging=LoggingConfig(**data.get('logging', {})),
            monitoring=MonitoringConfig(**data.get('monitoring', {})),
            tool=ToolConfig(**data.get('tool', {})),
        )

    def to_file(self, path: str):
        """Save configuration to JSON file."""
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'trie': asdict(self.trie),
            'storage': asdict(self.storage),
            'logging': asdict(self.logging),
            'monitoring': asdict(self.monitoring),
            'tool': asdict(self.tool),
        }
