"""
Synthetic acquiring ledger generator.

Produces raw ledger rows shaped like a bank's POS/ATM/IPG export, with the
usual spreadsheet mess: dates as serial numbers or text, amounts with
thousands separators, unpadded currency codes, and a few unusable rows.

Embedded story: success rate holds around 96% for the first half of the
window, then slips as insufficient-funds (51) and issuer-inoperative (91)
declines grow.

Usage:
    acquiring-kpi generate
"""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import numpy as np
import polars as pl

from acquiring_kpi.contracts.schemas import RAW_LEDGER_COLUMNS, SERIAL_DATE_EPOCH

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
TOTAL_ROWS = 12_000
START_DATE = datetime(2025, 10, 1)
DAYS = 180
RAW_OUTPUT_PATH = "data/raw/ledger.csv"

CHANNEL_WEIGHTS = {"POS": 0.60, "ATM": 0.25, "IPG": 0.15}
BRAND_WEIGHTS = {"VISA": 0.45, "MASTERCARD": 0.40, "AMEX": 0.10, "RUPAY": 0.05}
MCC_CHOICES = ["5411", "5812", "3501", "4511", "5734", "6011", "5999", "7011"]

# (code, reason, category)
DECLINES = {
    "51": ("Insufficient Funds", "User"),
    "55": ("Incorrect PIN", "User"),
    "54": ("Expired Card", "User"),
    "14": ("Invalid Card Number", "User"),
    "05": ("Do Not Honour", "Business"),
    "57": ("Transaction Not Permitted", "Business"),
    "59": ("Suspected Fraud", "Business"),
    "91": ("Issuer Inoperative", "Technical"),
    "96": ("System Malfunction", "Technical"),
    "68": ("Response Received Too Late", "Technical"),
}

BASELINE_DECLINE_WEIGHTS = {
    "51": 0.30, "55": 0.12, "54": 0.06, "14": 0.05,
    "05": 0.20, "57": 0.07, "59": 0.05,
    "91": 0.07, "96": 0.05, "68": 0.03,
}

DEGRADED_DECLINE_WEIGHTS = {
    "51": 0.38, "55": 0.08, "54": 0.04, "14": 0.03,
    "05": 0.15, "57": 0.05, "59": 0.04,
    "91": 0.16, "96": 0.05, "68": 0.02,
}

BASELINE_SUCCESS_RATE = 0.96
DEGRADED_SUCCESS_RATE = 0.91

# Share of rows with an unknown channel or a currency that does not match it
INVALID_ROW_RATE = 0.01


def _pick(rng: np.random.Generator, weights: dict[str, float]) -> str:
    keys = list(weights.keys())
    probs = np.array(list(weights.values()), dtype=float)
    probs /= probs.sum()
    return str(rng.choice(keys, p=probs))


def _format_date(rng: np.random.Generator, ts: datetime) -> str:
    """Roughly a third of exports carry spreadsheet serials instead of text."""
    if rng.random() < 0.35:
        serial = (ts - SERIAL_DATE_EPOCH).total_seconds() / 86_400
        return f"{serial:.6f}"
    return ts.strftime("%Y-%m-%d %H:%M:%S")


def _format_amount(amount: float) -> str:
    return f"{amount:,.2f}"


def _currency(rng: np.random.Generator, channel: str) -> str:
    if channel == "IPG":
        return "840" if rng.random() < 0.6 else "356"
    # local currency code, sometimes with its leading zero lost
    return "064" if rng.random() < 0.5 else "64"


def generate_ledger(n: int = TOTAL_ROWS, seed: int = 42) -> list[dict[str, Any]]:
    rng = np.random.default_rng(seed=seed)
    rows = []
    for i in range(n):
        day = int(rng.integers(0, DAYS))
        ts = START_DATE + timedelta(days=day, seconds=int(rng.integers(0, 86_400)))
        degraded = day >= DAYS // 2
        channel = _pick(rng, CHANNEL_WEIGHTS)
        currency = _currency(rng, channel)

        txn_type = channel
        if rng.random() < INVALID_ROW_RATE:
            if rng.random() < 0.5:
                txn_type = "MOTO"
            else:
                currency = "978"

        success_rate = DEGRADED_SUCCESS_RATE if degraded else BASELINE_SUCCESS_RATE
        if rng.random() < success_rate:
            code, reason, category = "00", "Approved", ""
        else:
            code = _pick(rng, DEGRADED_DECLINE_WEIGHTS if degraded else BASELINE_DECLINE_WEIGHTS)
            reason, category = DECLINES[code]

        amount = float(rng.lognormal(mean=7.0, sigma=1.1))
        if channel == "IPG":
            amount /= 80

        rows.append({
            "CARD_NETWORK": _pick(rng, BRAND_WEIGHTS),
            "TXN_TYPE": txn_type,
            "TRANSACTION_DATE": _format_date(rng, ts),
            "MID": f"MID{int(rng.integers(1, 401)):05d}",
            "MERCHANT_NAME": f"Merchant {int(rng.integers(1, 401))}",
            "VALUE": _format_amount(round(amount, 2)),
            "RRNO": f"{i:012d}",
            "MCC": str(rng.choice(MCC_CHOICES)),
            "CURRENCY": currency,
            "RESPONSE_CODE": code,
            "RESPONSE_REASON": reason,
            "RESPONSE_CATEGORY": category,
        })
    return rows


def ledger_frame(rows: list[dict[str, Any]]) -> pl.DataFrame:
    """All-text frame in ledger column order, as a spreadsheet export would be."""
    return pl.DataFrame(rows, schema={col: pl.Utf8 for col in RAW_LEDGER_COLUMNS})


def write_ledger(path: str = RAW_OUTPUT_PATH, n: int = TOTAL_ROWS, seed: int = 42) -> pl.DataFrame:
    df = ledger_frame(generate_ledger(n, seed))
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.write_csv(path)
    return df
