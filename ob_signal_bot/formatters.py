from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence

from .models import LONG, MultiScanResult, ScanResult, Signal
from .scanner import classify_agreement


_TZ_RE = re.compile(r"^UTC([+-])(\d{1,2})$")


def parse_tz(tz_str: str) -> timezone:
    tz_str = (tz_str or "UTC").strip().upper()
    if tz_str == "UTC":
        return timezone.utc
    m = _TZ_RE.match(tz_str)
    if not m:
        raise ValueError(f"Unsupported timezone format: {tz_str} (use 'UTC' or 'UTC+8' etc.)")
    sign = 1 if m.group(1) == "+" else -1
    hours = int(m.group(2))
    return timezone(timedelta(hours=sign * hours))


def _fmt_now(tz: str, now: Optional[datetime] = None) -> str:
    dt = (now or datetime.now(timezone.utc)).astimezone(parse_tz(tz))
    return dt.strftime("%Y-%m-%d %H:%M") + f" ({tz.upper()})"


def _fmt_price(val: Optional[float], places: int = 4) -> str:
    if val is None:
        return "-"
    return f"{val:.{places}f}"


def _fmt_pct(val: Optional[float]) -> str:
    if val is None:
        return "-"
    return f"{val:+.2f}%"


def _icon(direction: Optional[str]) -> str:
    return "🟢" if direction == LONG else "🔴"


def _tp_line(targets: Sequence[float]) -> str:
    labels = "/".join(str(i + 1) for i in range(len(targets)))
    return f"TP{labels}: " + " / ".join(_fmt_price(t) for t in targets)


def _signal_lines(signal: Signal) -> List[str]:
    lines = [
        f"OB zone: {_fmt_price(signal.ob_low)} ~ {_fmt_price(signal.ob_high)}",
        f"Entry: {_fmt_price(signal.entry)} | Stop: {_fmt_price(signal.stop)}",
        _tp_line(signal.targets),
    ]
    if signal.snr is not None:
        lines.append(f"Trend SNR: {signal.snr:.2f}")
    return lines


def format_scan(rows: Iterable[ScanResult], *, only_hits: bool = False, tz: str = "UTC+8", now: Optional[datetime] = None) -> str:
    """Text for /signal replies and scheduled pushes (only_hits=True)."""
    ts = _fmt_now(tz, now)
    if only_hits:
        lines = ["📊 Order block entries (in-zone only)", f"🕒 Signal time: {ts}", ""]
    else:
        lines = ["📈 Quotes and order block entries (in-zone only)", f"🕒 Generated: {ts}", ""]

    for r in rows:
        if r.error:
            lines += [r.symbol, f"Error: {r.error}", ""]
            continue
        if not only_hits:
            lines += [r.symbol, f"Price: {_fmt_price(r.price)}", f"Change: {_fmt_pct(r.percent_change)}"]
        sig = r.signal
        if sig is not None:
            icon = _icon(sig.direction)
            lines.append(f"{icon} Symbol: {r.symbol}")
            lines.append(f"Direction: {icon} {sig.direction} ({sig.timeframe})")
            lines += _signal_lines(sig)
            lines.append("")
        elif not only_hits:
            lines += ["— Signal: none", ""]
    return "\n".join(lines).strip()


def format_summary(rows: Iterable[MultiScanResult], timeframes: Sequence[str], *, tz: str = "UTC+8", now: Optional[datetime] = None) -> str:
    """Multi-timeframe agreement digest for /summary."""
    lines = ["📊 Multi-timeframe order block summary (in-zone only)", f"🕒 Generated: {_fmt_now(tz, now)}", ""]

    aligned = []
    divergent = []
    for r in rows:
        verdict = classify_agreement(r)
        (aligned if verdict.aligned else divergent).append((r, verdict))

    if aligned:
        lines += ["🟢 Aligned (every timeframe with a signal agrees)", ""]
        for r, verdict in aligned:
            lines.append(r.symbol)
            lines.append(f"Price: {_fmt_price(r.price)}  Change: {_fmt_pct(r.percent_change)}")
            lines.append(f"Direction: {_icon(verdict.direction)} {verdict.direction}")
            for tf in timeframes:
                outcome = r.per_timeframe.get(tf)
                if outcome is None or outcome.signal is None:
                    continue
                lines.append(f"— {tf}")
                lines += _signal_lines(outcome.signal)
            lines.append("")

    if divergent:
        lines += ["⚠ Divergent or missing signals", ""]
        for r, verdict in divergent:
            lines.append(r.symbol)
            if verdict.reason == "error":
                lines += [f"Reason: {r.error}", ""]
                continue
            if verdict.reason == "no_signal" and not any(o.error for o in r.per_timeframe.values()):
                lines += ["Reason: no signal on any timeframe", ""]
                continue
            lines.append(f"Price: {_fmt_price(r.price)}  Change: {_fmt_pct(r.percent_change)}")
            parts = []
            for tf in timeframes:
                outcome = r.per_timeframe.get(tf)
                if outcome is not None and outcome.signal is not None:
                    parts.append(f"{tf}={_icon(outcome.direction)}{outcome.direction}")
                elif outcome is not None and outcome.error:
                    parts.append(f"{tf}=error")
                else:
                    parts.append(f"{tf}=none")
            lines += ["Directions: " + ", ".join(parts), ""]

    return "\n".join(lines).strip()


def format_status(
    *,
    market: str,
    timeframes: Sequence[str],
    summary_timeframes: Sequence[str],
    subscribers: int,
    interval_s: int,
    tz: str = "UTC+8",
    now: Optional[datetime] = None,
) -> str:
    return "\n".join([
        f"Mode: signals only | Market: {market}",
        f"Timeframes: {', '.join(timeframes)}",
        f"Summary timeframes: {', '.join(summary_timeframes)}",
        f"Auto scan: every {int(interval_s)}s | Subscribed chats: {subscribers}",
        f"Time: {_fmt_now(tz, now)}",
    ])
