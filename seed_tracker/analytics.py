from __future__ import annotations

from collections import defaultdict
from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional, Sequence

from .storage import AnalyticsSample


def _sample_start(sample: AnalyticsSample) -> datetime:
    return datetime.combine(sample.date, time(hour=sample.hour))


def peak_hours(samples: Sequence[AnalyticsSample], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Hours of the day ranked by how often the server was seeding in them."""
    by_hour: Dict[int, List[AnalyticsSample]] = defaultdict(list)
    for s in samples:
        by_hour[s.hour].append(s)

    ranked = []
    for hour, hour_samples in by_hour.items():
        ranked.append(
            {
                "hour": hour,
                "seeding_samples": sum(1 for s in hour_samples if s.seeding_active),
                "samples": len(hour_samples),
                "avg_players": round(sum(s.player_count for s in hour_samples) / len(hour_samples), 1),
            }
        )
    ranked.sort(key=lambda h: (-h["seeding_samples"], -h["avg_players"], h["hour"]))
    return ranked[:limit] if limit is not None else ranked


def daily_trend(samples: Sequence[AnalyticsSample]) -> List[Dict[str, Any]]:
    by_date: Dict[Any, List[AnalyticsSample]] = defaultdict(list)
    for s in samples:
        by_date[s.date].append(s)

    trend = []
    previous_avg: Optional[float] = None
    for day in sorted(by_date):
        day_samples = by_date[day]
        avg = round(sum(s.player_count for s in day_samples) / len(day_samples), 1)
        trend.append(
            {
                "date": day.isoformat(),
                "avg_players": avg,
                "peak_players": max(s.player_count for s in day_samples),
                "seeding_hours": sum(1 for s in day_samples if s.seeding_active),
                "full_hours": sum(1 for s in day_samples if s.server_full),
                "change": None if previous_avg is None else round(avg - previous_avg, 1),
            }
        )
        previous_avg = avg
    return trend


def success_rate(samples: Sequence[AnalyticsSample]) -> Optional[float]:
    """
    Share of seeding hours followed by an hour with the same or more players.

    Only pairs of back-to-back hourly samples count; returns None when there
    is no such pair.
    """
    ordered = sorted(samples, key=_sample_start)
    attempts = 0
    successes = 0
    for current, following in zip(ordered, ordered[1:]):
        if not current.seeding_active:
            continue
        if _sample_start(following) - _sample_start(current) != timedelta(hours=1):
            continue
        attempts += 1
        if following.player_count >= current.player_count:
            successes += 1
    if attempts == 0:
        return None
    return successes / attempts


def summarize(samples: Sequence[AnalyticsSample], days: int) -> Dict[str, Any]:
    rate = success_rate(samples)
    return {
        "days": days,
        "samples": len(samples),
        "seeding_hours": sum(1 for s in samples if s.seeding_active),
        "full_hours": sum(1 for s in samples if s.server_full),
        "avg_players": round(sum(s.player_count for s in samples) / len(samples), 1) if samples else 0.0,
        "peak_players": max((s.player_count for s in samples), default=0),
        "peak_hours": peak_hours(samples, limit=5),
        "daily_trend": daily_trend(samples),
        "success_rate": None if rate is None else round(rate, 3),
    }


def build_recommendations(
    samples: Sequence[AnalyticsSample],
    seeders: Sequence[Dict[str, Any]],
    *,
    seed_start: int,
) -> List[str]:
    if not samples:
        return ["Not enough population data yet. Recommendations appear after a few hours of tracking."]

    recommendations = []
    hours = peak_hours(samples)

    best = [h for h in hours if h["seeding_samples"] > 0][:3]
    if best:
        labels = ", ".join(f"{h['hour']:02d}:00" for h in best)
        recommendations.append(f"Seeding most often happens around {labels}; schedule seeding calls just before.")

    quiet = sorted(hours, key=lambda h: (h["avg_players"], h["hour"]))[:3]
    quiet = [h for h in quiet if h["avg_players"] < seed_start]
    if quiet:
        labels = ", ".join(f"{h['hour']:02d}:00" for h in quiet)
        recommendations.append(f"Population is lowest around {labels}; these hours need seeders the most.")

    rate = success_rate(samples)
    if rate is not None:
        if rate < 0.5:
            recommendations.append(
                f"Only {rate:.0%} of seeding hours held or grew their population; consider alerting earlier."
            )
        else:
            recommendations.append(f"{rate:.0%} of seeding hours held or grew their population.")

    trend = daily_trend(samples)
    if len(trend) >= 2 and trend[-1]["change"] is not None and trend[-1]["change"] < 0:
        recommendations.append(
            f"Average population dropped by {abs(trend[-1]['change'])} players since the previous day."
        )

    if seeders:
        top = seeders[0]
        recommendations.append(
            f"{top['display_name']} is the most consistent seeder ({top['active_days']} active days); "
            "consider recognising regular seeders."
        )

    return recommendations
