"""Branch health scoring from a branch snapshot."""

from models import OptimizedBranchSnapshot

WEIGHTS = {
    "performance": 0.4,
    "freshness": 0.3,
    "cache": 0.2,
    "reliability": 0.1,
}
FULL_FRESHNESS_WINDOW = 5 * 60  # seconds
REFRESH_HINT_AGE = 10 * 60


def branch_health_score(snapshot: OptimizedBranchSnapshot, now: float) -> int:
    perf = snapshot.performance

    performance_score = max(0.0, 100 - perf.load_time_ms / 10)
    age = now - snapshot.last_updated
    freshness_score = max(0.0, 100 - (age / FULL_FRESHNESS_WINDOW) * 20)
    cache_score = perf.cache_hit_ratio_percent
    reliability_score = max(0.0, 100 - perf.error_count * 10)

    score = (
        performance_score * WEIGHTS["performance"]
        + freshness_score * WEIGHTS["freshness"]
        + cache_score * WEIGHTS["cache"]
        + reliability_score * WEIGHTS["reliability"]
    )
    return round(score)


def health_status(score: float) -> str:
    if score >= 90:
        return "excellent"
    if score >= 80:
        return "good"
    if score >= 70:
        return "fair"
    if score >= 60:
        return "poor"
    return "critical"


def branch_recommendations(snapshot: OptimizedBranchSnapshot, now: float) -> list[str]:
    perf = snapshot.performance
    hints: list[str] = []

    if perf.load_time_ms > 1000:
        hints.append("Optimize data queries to reduce load time")
    if perf.cache_hit_ratio_percent < 60:
        hints.append("Increase cache utilization for better performance")
    if perf.error_count > 0:
        hints.append("Investigate and resolve data loading errors")
    if now - snapshot.last_updated > REFRESH_HINT_AGE:
        hints.append("Data needs refresh - consider more frequent sync")

    return hints
