"""
Pricing (MXN) and the pre-flight credit gate.

Prices include the 50% markup over provider cost. The gate is advisory: it reads
the balance and fails fast, but never reserves funds. The actual debit happens in
the billing backend after the generation record completes.
"""

from config import Config
from errors import InsufficientCredits

PRICING = {
    "image": 1.31,            # Imagen / Gemini image, per image
    "video": 13.13,           # Veo, per second of output
    "style": 0.26,            # Style analysis (vision text call)
    "character": 1.31,        # Same as image generation
    "scene_builder": 0.26,    # Text-only scene planning
    "story_segment": 0.20,    # Text-only story planning, per segment
}

# Operations billed by the second; everything else is a flat price
TIME_PRICED = {"video"}
DEFAULT_VIDEO_SECONDS = 2


def cost(operation: str, duration_seconds: float | None = None) -> float:
    """
    Price of one operation in MXN.

    Time-priced operations multiply the per-second rate by duration_seconds;
    flat-priced ones ignore it. Unknown operations cost 0 (see is_priced).
    """
    rate = PRICING.get(operation)
    if rate is None:
        return 0.0
    if operation in TIME_PRICED:
        seconds = duration_seconds if duration_seconds else DEFAULT_VIDEO_SECONDS
        return round(rate * seconds, 2)
    return rate


def is_priced(operation: str) -> bool:
    """False for operations with no price; callers must not bill those."""
    return operation in PRICING


def story_cost(segment_count: int) -> float:
    """Estimated story planning price for a requested segment count (clamped to the story limits)."""
    return round(PRICING["story_segment"] * Config().clamp_segment_count(segment_count), 2)


def ensure_affordable(balance: float, estimated_cost: float, currency: str = "MXN") -> None:
    """Raise InsufficientCredits when balance cannot cover estimated_cost."""
    if estimated_cost <= 0:
        return
    if balance < estimated_cost:
        raise InsufficientCredits(required=estimated_cost, available=balance, currency=currency)


def check_balance(balance_source, estimated_cost: float) -> float:
    """Read the current balance from balance_source.get_balance() and gate on it. Returns the balance."""
    current = balance_source.get_balance()
    ensure_affordable(current.balance, estimated_cost, current.currency)
    return current.balance
