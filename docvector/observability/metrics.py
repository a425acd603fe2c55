import threading
from typing import Dict, List


class MetricsTracker:
    """Request counters and latency history, kept in process memory."""

    def __init__(self):

        self._lock = threading.Lock()

        self._metrics = self._empty()


    @staticmethod
    def _empty() -> Dict:

        return {

            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,

            "total_latency": 0.0,
            "avg_latency": 0.0,

            # latency history (needed for percentile calculation)
            "latencies": [],

            # per-operation counters: ingest, search, delete
            "operations": {},

        }


    def record_success(self, latency: float):

        with self._lock:

            self._metrics["total_requests"] += 1

            self._metrics["successful_requests"] += 1

            self._metrics["total_latency"] += latency

            self._metrics["avg_latency"] = (
                self._metrics["total_latency"]
                / self._metrics["successful_requests"]
            )

            self._metrics["latencies"].append(latency)


    def record_failure(self):

        with self._lock:

            self._metrics["total_requests"] += 1

            self._metrics["failed_requests"] += 1


    def record_operation(self, operation: str, count: int = 1):

        with self._lock:

            operations = self._metrics["operations"]

            operations[operation] = operations.get(operation, 0) + count


    def get_metrics(self) -> Dict:

        with self._lock:

            snapshot = dict(self._metrics)
            snapshot["operations"] = dict(self._metrics["operations"])
            snapshot["latencies"] = list(self._metrics["latencies"])

        snapshot["p50_latency"] = self.get_latency_percentile(50)
        snapshot["p95_latency"] = self.get_latency_percentile(95)

        return snapshot


    def get_latency_percentile(self, percentile: float) -> float:

        with self._lock:
            latencies: List[float] = list(self._metrics["latencies"])

        if not latencies:
            return 0.0

        sorted_latencies = sorted(latencies)

        index = int(len(sorted_latencies) * percentile / 100)

        index = min(index, len(sorted_latencies) - 1)

        return sorted_latencies[index]


    def reset(self):

        with self._lock:
            self._metrics = self._empty()


metrics_tracker = MetricsTracker()
