import logging

from django.core.cache import cache

from .errors import RateLimited

logger = logging.getLogger("qrcall")


def client_ip(request) -> str:
    forwarded = request.META.get("HTTP_X_FORWARDED_FOR")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.META.get("REMOTE_ADDR", "unknown")


def check_call_rate(ip: str, qr_id: str, max_calls: int, window_seconds: int) -> None:
    """Fixed-window counter per (ip, qrId) in the Django cache."""
    if max_calls <= 0:
        return
    key = f"qrcall:rate:{ip}:{qr_id}"
    if cache.add(key, 1, timeout=window_seconds):
        return
    try:
        count = cache.incr(key)
    except ValueError:
        # Expired between add() and incr()
        cache.add(key, 1, timeout=window_seconds)
        return
    if count > max_calls:
        logger.warning(f"[RATE] {ip} exceeded {max_calls} calls/{window_seconds}s for {qr_id}")
        raise RateLimited(
            "Too many call attempts. Please try again later.",
            retryAfter=window_seconds,
        )
