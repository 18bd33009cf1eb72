from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram


class MetricsRecorder:
    """
    records self-metrics of analysis runs into Prometheus
    collectors:
     - analysis_runs_total: runs labeled by analysis and status
     (ok, failed, cancelled, invalid).
     - records_scanned_total / records_excluded_total: input
     records read and records dropped for a missing dimension.
     - analysis_duration_seconds: wall time per analysis.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._runs: "Counter" = Counter(
            "costlens_analysis_runs_total",
            "Total analysis runs by analysis and outcome",
            ["analysis", "status"],
            registry=registry,
        )
        self._scanned: "Counter" = Counter(
            "costlens_records_scanned_total",
            "Total billing records read by analysis",
            ["analysis"],
            registry=registry,
        )
        self._excluded: "Counter" = Counter(
            "costlens_records_excluded_total",
            "Total billing records excluded for a missing dimension",
            ["analysis"],
            registry=registry,
        )
        self._duration: "Histogram" = Histogram(
            "costlens_analysis_duration_seconds",
            "Duration of analysis runs",
            ["analysis"],
            registry=registry,
        )

    @property
    def registry(self) -> "CollectorRegistry":
        return self._registry

    def inc_run(self, analysis: "str", status: "str") -> "None":
        self._runs.labels(analysis=analysis, status=status).inc()

    def add_scanned(self, analysis: "str", count: "int") -> "None":
        if count:
            self._scanned.labels(analysis=analysis).inc(count)

    def add_excluded(self, analysis: "str", count: "int") -> "None":
        if count:
            self._excluded.labels(analysis=analysis).inc(count)

    def observe_duration(self, analysis: "str", duration_seconds: "float") -> "None":
        self._duration.labels(analysis=analysis).observe(duration_seconds)
