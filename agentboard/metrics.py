from prometheus_client import Counter, Histogram, generate_latest

requests_total = Counter("agentboard_requests_total", "Total API requests")
request_latency = Histogram(
    "agentboard_request_latency_seconds",
    "API request latency",
    ["path", "method", "status"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)
jobs_processed_total = Counter("agentboard_jobs_processed_total", "Total jobs processed", ["job_type", "status"])
job_duration_seconds = Histogram(
    "agentboard_job_duration_seconds",
    "Job duration seconds",
    ["job_type", "status"],
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60),
)
work_items_extracted_total = Counter(
    "agentboard_work_items_extracted_total",
    "Work items created from agent replies",
    ["kind"],
)
events_published_total = Counter("agentboard_events_published_total", "Broadcast events published", ["event_type"])
model_calls_total = Counter("agentboard_model_calls_total", "Language model calls", ["purpose", "status"])


class Metrics:
    def inc_request(self) -> None:
        requests_total.inc()

    def observe_request(self, path: str, method: str, status: str, duration_s: float) -> None:
        request_latency.labels(path=path, method=method, status=status).observe(duration_s)

    def inc_job(self, job_type: str, status: str) -> None:
        jobs_processed_total.labels(job_type=job_type, status=status).inc()

    def observe_job_duration(self, job_type: str, status: str, duration_s: float) -> None:
        job_duration_seconds.labels(job_type=job_type, status=status).observe(duration_s)

    def inc_work_item(self, kind: str) -> None:
        work_items_extracted_total.labels(kind=kind).inc()

    def inc_event(self, event_type: str) -> None:
        events_published_total.labels(event_type=event_type).inc()

    def inc_model_call(self, purpose: str, status: str) -> None:
        model_calls_total.labels(purpose=purpose, status=status).inc()

    def to_prometheus(self) -> bytes:
        return generate_latest()


metrics = Metrics()
