"""
Synthetic daily click history for the listing detail chart.

No per-day click log is stored, so the chart spreads a listing's total
click count over the days since it was posted using randomized weights
that grow towards the present. The shape changes on every call; the sum
never does.
"""
import random
from datetime import timedelta

from django.utils import timezone

MAX_DAYS = 14


def history_length(created_at, now=None):
    now = now or timezone.now()
    diff_days = max(1, int((now - created_at).total_seconds() // 86400))
    return min(diff_days + 1, MAX_DAYS)


def generate_click_history(total_clicks, created_at, now=None, rng=None):
    """
    Split `total_clicks` into one bucket per day since `created_at`.

    Returns a list of {"day": "3 Mar", "clicks": n} dicts, oldest first,
    whose clicks always add up to `total_clicks`.
    """
    rng = rng or random.Random()
    days = history_length(created_at, now)
    remaining = max(int(total_clicks or 0), 0)

    # newest day first; the day of posting takes whatever is left
    buckets = [0] * days
    for index in range(days - 1, 0, -1):
        weight = (days - index) / days
        chunk = round(remaining * weight * (0.3 + rng.random() * 0.4))
        value = min(chunk, remaining)
        buckets[index] = value
        remaining -= value
    buckets[0] = remaining

    start = timezone.localtime(created_at)
    series = []
    for offset, clicks in enumerate(buckets):
        day = start + timedelta(days=offset)
        series.append({"day": f"{day.day} {day:%b}", "clicks": clicks})
    return series


def chart_stats(series):
    """Peak, daily average and bar heights (percent of peak) for a series."""
    values = [point["clicks"] for point in series]
    total = sum(values)
    peak = max(values) if values else 0
    scale = max(peak, 1)
    bars = [
        {
            **point,
            "height": max(round(point["clicks"] / scale * 100), 3),
            "is_peak": peak > 0 and point["clicks"] == peak,
        }
        for point in series
    ]
    return {
        "total": total,
        "peak": peak,
        "average": round(total / len(values)) if values else 0,
        "bars": bars,
    }
