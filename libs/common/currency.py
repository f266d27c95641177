"""Currency conversion utilities for Paylive.

Internal storage unit for Stripe amounts: cents (100 cents = 1 EUR).
API / display unit: euros (float, e.g. 12.5 = 12,50 EUR).
"""

from __future__ import annotations

# ─── constants ───────────────────────────────────────────────────────────────

CENTS_PER_EURO: int = 100


# ─── conversion helpers ───────────────────────────────────────────────────────


def euros_to_cents(euros: float) -> int:
    """Convert euros to cents (rounded, never negative)."""
    return max(0, round(float(euros or 0) * CENTS_PER_EURO))


def cents_to_euros(cents: int) -> float:
    """Convert cents to euros. 100 cents = 1 EUR."""
    return cents / CENTS_PER_EURO


def parse_cents(raw: object) -> int:
    """Parse an integer cents value stored as a string (Stripe metadata).

    Anything unparsable counts as 0.
    """
    try:
        return int(str(raw if raw is not None else "0").strip() or "0")
    except ValueError:
        return 0


def format_euros(amount: float) -> str:
    """Format an amount the way the storefront displays it, e.g. ``12,50 €``."""
    return f"{amount:.2f}".replace(".", ",") + " €"
