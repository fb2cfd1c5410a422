# mpt/monitoring.py
from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest
import logging

logger = logging.getLogger(__name__)


class TrieMetrics:
    def __init__(self, namespace: str = "mpt", registry: CollectorRegistry = None):
        # Each instance gets an isolated registry unless one is shared in
        self.registry = registry or CollectorRegistry()

        self.operations = Counter(f'{namespace}_operations_total', 'Trie operations performed', ['operation'], registry=self.registry)
        self.operation_latency = Histogram(f'{namespace}_operation_latency_seconds', 'Latency of trie operations', ['operation'], registry=self.registry)
        self.nodes_written = Counter(f'{namespace}_nodes_written_total', 'Nodes written to the node store', registry=self.registry)
        self.proof_nodes = Histogram(f'{namespace}_proof_nodes', 'Number of nodes in generated proofs', buckets=(1, 2, 3, 4, 6, 8, 12, 16, 24, 32, 64), registry=self.registry)
        self.verifications = Counter(f'{namespace}_proof_verifications_total', 'Proof verifications by outcome', ['outcome'], registry=self.registry)

    def record_operation(self, operation: str, latency: float):
        self.operations.labels(operation=operation).inc()
        self.operation_latency.labels(operation=operation).observe(latency)

    def record_nodes_written(self, count: int):
        self.nodes_written.inc(count)

    def record_proof(self, size: int):
        self.proof_nodes.observe(size)

    def record_verification(self, result):
        outcome = 'verified' if result else result.reason.value
        self.verifications.labels(outcome=outcome).inc()
        if not result:
            logger.debug(f"Recorded failed verification: {outcome}")

    def exposition(self) -> bytes:
        """Metrics in the Prometheus text format."""
        return generate_latest(self.registry)
