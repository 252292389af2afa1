from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

LAMPORTS_PER_SOL = 1_000_000_000


def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


def sol_to_lamports(sol: float) -> int:
    """
    Convert a SOL amount to integer lamports, rounding half up at the 9th decimal.
    0.1 SOL is exactly 100000000 lamports, never 99999999.
    """
    if sol < 0:
        raise ValueError(f"Negative amount: {sol}")
    return int((Decimal(str(sol)) * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_HALF_UP))
