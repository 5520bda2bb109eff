"""
Specialist Marketplace Backend — Price Derivation
==================================================

final_price = base_price + (platform_fee or 0)

Inputs come from the transport layer as strings or numbers and are parsed
to float before summing. Stored values are NUMERIC(10,2), so the results
are quantized to cents on the way into the model.
"""

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

CENTS = Decimal("0.01")

# Largest value a NUMERIC(10,2) column holds
MAX_PRICE = 99_999_999.99


def parse_price(value: Any, label: str = "Price") -> Optional[float]:
    """
    Parse a free-form price. None or a blank string means "not given".

    Raises:
        ValueError: not a finite number between 0 and MAX_PRICE
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{label} must be a valid number")
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            raise ValueError(f"{label} must be a valid number")

    if not math.isfinite(number):
        raise ValueError(f"{label} must be a valid number")
    if number < 0:
        raise ValueError(f"{label} cannot be negative")
    if number > MAX_PRICE:
        raise ValueError(f"{label} must not exceed {MAX_PRICE:.2f}")
    return number


def compute_final_price(base_price: float, platform_fee: Optional[float] = None) -> float:
    """
    Raises:
        ValueError: the sum does not fit the price column
    """
    final_price = base_price + (platform_fee or 0.0)
    if final_price > MAX_PRICE:
        raise ValueError(f"Final price must not exceed {MAX_PRICE:.2f}")
    return final_price


def derive_final_price(
    stored_base_price: Decimal,
    stored_platform_fee: Optional[Decimal],
    changes: Dict[str, Any],
) -> Optional[float]:
    """
    Recompute final_price for a partial update.

    Only the keys present in `changes` count as supplied. A missing input is
    read from the stored row, so sending platform_fee alone still yields
    stored base_price + new fee.

    Returns:
        The new final price, or None when neither pricing input was supplied.
    """
    if "base_price" not in changes and "platform_fee" not in changes:
        return None

    if "base_price" in changes:
        base_price = float(changes["base_price"])
    else:
        base_price = float(stored_base_price)

    if "platform_fee" in changes:
        platform_fee = changes["platform_fee"]
    else:
        platform_fee = float(stored_platform_fee) if stored_platform_fee is not None else None

    return compute_final_price(base_price, platform_fee)


def to_decimal(value: Optional[float]) -> Optional[Decimal]:
    """Quantize a float price to cents for a NUMERIC(10,2) column."""
    if value is None:
        return None
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)
