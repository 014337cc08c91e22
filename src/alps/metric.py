import re

from prometheus_client import Counter

request_counter = Counter("alps_num_req", "Total number of requests", labelnames=["path"])

api_call_count = Counter(
    "alps_num_api_calls",
    "Total number of GitHub API calls",
    labelnames=["endpoint"],
)

metadata_cache_total = Counter(
    "alps_metadata_cache_total",
    "Metadata cache decisions",
    labelnames=["result"],
)

metadata_write_back_total = Counter(
    "alps_metadata_write_back_total",
    "Metadata cache write-backs into build storage",
    labelnames=["scope", "result"],
)

github_data_cache_total = Counter(
    "alps_github_data_cache_total",
    "Lookups in the in-memory GitHub data cache",
    labelnames=["kind", "result"],
)

stats_compute_total = Counter(
    "alps_stats_compute_total",
    "Statistics computations",
    labelnames=["variant", "result"],
)

token_last_used_error_total = Counter(
    "alps_token_last_used_error_total",
    "Failures while recording access token last-used time",
)

error_counter = Counter(
    "alps_error_counter", "Total number of errors", labelnames=["context"]
)

_REPO_PREFIX = re.compile(r"^/?repos/[^/]+/[^/]+/?")


def _normalize_api_endpoint(url: str) -> str:
    path = url.split("?", 1)[0]
    path = _REPO_PREFIX.sub("", path)
    if not path:
        return "repository"
    head = path.split("/", 1)[0]
    if head == "actions":
        parts = path.split("/")
        return "/".join(parts[:2])
    return head


def record_api_call(endpoint: str) -> None:
    api_call_count.labels(endpoint=_normalize_api_endpoint(endpoint)).inc()
