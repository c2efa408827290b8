from dataclasses import dataclass, field


@dataclass
class MetricBucket:
    total: int = 0
    errors: int = 0
    latency_total_ms: float = 0.0

    def record(self, duration_ms: float, error: bool) -> None:
        self.total += 1
        if error:
            self.errors += 1
        self.latency_total_ms += duration_ms

    def snapshot(self) -> dict[str, float | int]:
        avg = self.latency_total_ms / self.total if self.total else 0.0
        return {
            "total": self.total,
            "errors": self.errors,
            "avg_latency_ms": round(avg, 2),
        }


@dataclass
class GiftCounters:
    requests_created: int = 0
    auto_approved: int = 0
    approved: int = 0
    denied: int = 0
    conflicts: int = 0
    special_requests_created: int = 0
    magic_votes: int = 0
    refunds: int = 0

    def snapshot(self) -> dict[str, int]:
        return dict(self.__dict__)


@dataclass
class GiftMetrics:
    requests: MetricBucket = field(default_factory=MetricBucket)
    approvals: MetricBucket = field(default_factory=MetricBucket)
    counters: GiftCounters = field(default_factory=GiftCounters)

    def record_request(self, duration_ms: float, error: bool) -> None:
        self.requests.record(duration_ms, error)

    def record_approval(self, duration_ms: float, error: bool) -> None:
        self.approvals.record(duration_ms, error)

    def incr(self, name: str, amount: int = 1) -> None:
        setattr(self.counters, name, getattr(self.counters, name) + amount)

    def reset(self) -> None:
        self.requests = MetricBucket()
        self.approvals = MetricBucket()
        self.counters = GiftCounters()

    def snapshot(self) -> dict[str, object]:
        return {
            "gift_request": self.requests.snapshot(),
            "gift_approval": self.approvals.snapshot(),
            "workflow": self.counters.snapshot(),
        }


gift_metrics = GiftMetrics()
