from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union


Number = Union[int, float, str, Decimal]


def amount_to_cents(value: Number, *, allow_negative: bool = False) -> int:
    """Convert a wire amount (``12.5``, ``"12,50"``) to integer cents."""
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    clean = str(value).strip().replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def cents_to_amount(cents: int) -> float:
    return float(Decimal(cents) / Decimal(100))


def format_amount(cents: int) -> str:
    """Render cents the way they read in plain text: ``100``, ``12.5``."""
    value = Decimal(cents) / Decimal(100)
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return text or "0"
