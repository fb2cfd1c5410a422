"""
Merkle Proof Tool

Builds a trie from a JSON data file, prints its root, and produces or checks
proofs for single keys. A verifier only needs the proof bundle: no trie or
node store is consulted when checking it.

Data files look like:
    {"entries": [{"key": "<hex>", "value": "<hex>"}, ...]}
"""
import sys
import json
import logging
import argparse
from pathlib import Path
from typing import Optional

import msgpack

from mpt.config import Config, StorageConfig
from mpt.crypto import generate_hash
from mpt.errors import MalformedProof
from mpt.monitoring import TrieMetrics
from mpt.proof import ProofBundle
from mpt.trie import Trie

logger = logging.getLogger(__name__)


def sample_entries(count: int) -> list[dict]:
    """
    Synthetic entries keyed by the hash of a 20-byte identifier.

    Identifiers follow the 0x1111..., 0x2222... pattern; values are opaque
    msgpack records.
    """
    if not 1 <= count <= 255:
        raise ValueError("count must be between 1 and 255")
    entries = []
    for i in range(1, count + 1):
        identifier = bytes([(i * 0x11) & 0xff]) * 20
        record = {'id': identifier.hex(), 'balance': i * 1000}
        entries.append({
            'key': generate_hash(identifier).hex(),
            'value': msgpack.packb(record, use_bin_type=True).hex(),
        })
    return entries


def generate_sample_data(output_path: str, count: int = 3):
    """Writes a sample data file."""
    entries = sample_entries(count)
    with open(output_path, 'w') as f:
        json.dump({'entries': entries}, f, indent=2)
    logger.info(f"Wrote {len(entries)} sample entries to {output_path}")


def load_entries(data_path: str) -> list[tuple[bytes, bytes]]:
    """Reads (key, value) pairs from a data file; raises ValueError on bad entries."""
    with open(data_path, 'r') as f:
        data = json.load(f)
    try:
        return [(bytes.fromhex(e['key']), bytes.fromhex(e['value'])) for e in data.get('entries', [])]
    except (AttributeError, KeyError, TypeError) as e:
        raise ValueError(f"Invalid entry in {data_path}: {e}") from e


def build_trie(data_path: str, metrics: Optional[TrieMetrics] = None,
               storage: Optional[StorageConfig] = None) -> Trie:
    """Builds a trie holding every entry of a data file on the configured store."""
    storage = storage or StorageConfig()
    entries = load_entries(data_path)
    trie = Trie(storage.open_store(name=Path(data_path).name), metrics=metrics)
    for key, value in entries:
        logger.debug(f"Adding key {key.hex()}")
        trie.put(key, value)
    logger.info(f"Loaded {len(entries)} entries, root {trie.root_hash.hex()}")
    return trie


def create_proof(data_path: str, key: bytes, output_path: str, binary: bool = False,
                 metrics: Optional[TrieMetrics] = None,
                 storage: Optional[StorageConfig] = None) -> ProofBundle:
    """Writes the proof bundle for one key of a data file."""
    trie = build_trie(data_path, metrics=metrics, storage=storage)
    bundle = ProofBundle.create(trie, key)
    if binary:
        Path(output_path).write_bytes(bundle.pack())
    else:
        with open(output_path, 'w') as f:
            json.dump(bundle.to_dict(), f, indent=2)
    status = "present" if bundle.value is not None else "absent"
    logger.info(f"Proof for {key.hex()} ({status}, {len(bundle.proof)} nodes) written to {output_path}")
    return bundle


def load_bundle(bundle_path: str) -> ProofBundle:
    data = Path(bundle_path).read_bytes()
    try:
        return ProofBundle.from_dict(json.loads(data))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return ProofBundle.unpack(data)


def verify_bundle(bundle_path: str, expected_value: Optional[bytes] = None,
                  metrics: Optional[TrieMetrics] = None):
    """Verifies a proof bundle against its own root hash."""
    bundle = load_bundle(bundle_path)
    result = bundle.verify(expected_value)
    if metrics:
        metrics.record_verification(result)
    if result:
        logger.info(f"Proof for {bundle.key.hex()} verified against root {bundle.root_hash.hex()}")
    else:
        logger.warning(f"Proof for {bundle.key.hex()} rejected: {result.reason.value}")
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Merkle Patricia Trie proof tool")
    parser.add_argument("--config", type=str, help="Path to JSON config file")
    parser.add_argument("--metrics", action="store_true", help="Print collected metrics on exit")
    subparsers = parser.add_subparsers(dest="command", required=True)

    parser_sample = subparsers.add_parser("sample-data", help="Generate a sample data file")
    parser_sample.add_argument("--output", type=str, default="entries.json", help="Output file path")
    parser_sample.add_argument("--count", type=int, help="Number of entries")

    parser_root = subparsers.add_parser("root", help="Print the root hash of a data file")
    parser_root.add_argument("--data", type=str, required=True, help="Path to data file")

    parser_prove = subparsers.add_parser("prove", help="Create a proof bundle for one key")
    parser_prove.add_argument("--data", type=str, required=True, help="Path to data file")
    parser_prove.add_argument("--key", type=str, required=True, help="Key as hex")
    parser_prove.add_argument("--output", type=str, default="proof.json", help="Output file path")
    parser_prove.add_argument("--binary", action="store_true", help="Write a msgpack bundle")

    parser_verify = subparsers.add_parser("verify", help="Verify a proof bundle")
    parser_verify.add_argument("--bundle", type=str, required=True, help="Path to proof bundle")
    parser_verify.add_argument("--expect", type=str, help="Expected value as hex")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = Config.from_file(args.config) if args.config else Config.default()
    config.logging.apply()

    metrics = None
    if args.metrics or config.monitoring.enabled:
        metrics = TrieMetrics(namespace=config.monitoring.namespace)

    exit_code = 0
    try:
        if args.command == "sample-data":
            count = args.count if args.count is not None else config.tool.sample_count
            generate_sample_data(args.output, count)
        elif args.command == "root":
            print(build_trie(args.data, metrics=metrics, storage=config.storage).root_hash.hex())
        elif args.command == "prove":
            binary = args.binary or config.tool.binary_bundles
            bundle = create_proof(args.data, bytes.fromhex(args.key), args.output, binary=binary,
                                  metrics=metrics, storage=config.storage)
            print(bundle.root_hash.hex())
        elif args.command == "verify":
            expected = bytes.fromhex(args.expect) if args.expect is not None else None
            result = verify_bundle(args.bundle, expected, metrics=metrics)
            if result:
                print("verified" if result.value is None else f"verified {result.value.hex()}")
            else:
                print(f"invalid {result.reason.value}")
                exit_code = 1
    except (MalformedProof, ValueError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 2

    if metrics:
        sys.stderr.write(metrics.exposition().decode())
    return exit_code


if __name__ == '__main__':
    sys.exit(main())
