#!/usr/bin/env python3
"""
Lightning Payment Timing Diagram

Reads the JSON output of an LND payment command on stdin and writes a
standalone HTML page that draws every HTLC attempt of one payment on a
horizontal time axis, followed by the amounts settled per route.

Usage:
    # retrospectively, from the payment listing
    lncli listpayments | timing-diagram <payment_hash> > out.html

    # directly from payinvoice/sendpayment output
    lncli payinvoice <payreq> | timing-diagram > out.html
"""

import argparse
import json
import sys
from collections import defaultdict

# Pixels available for the attempt/resolve window of the whole payment
AXIS_WIDTH_PX = 1500
# Extra time appended after the last resolution (1 second)
RIGHT_PADDING_NS = 1_000_000_000
PAGE_WIDTH_PX = 10000
FONT_URL = "http://fonts.googleapis.com/css?family=Open+Sans"

# Failure codes that still count towards the settled amount: parts that
# were already committed when the receiver gave up on the MPP set.
SETTLED_FAILURE_CODES = {"MPP_TIMEOUT"}

STATUS_COLORS = {
    "SUCCEEDED": "green",
    "FAILED": "red",
}
IN_FLIGHT_COLOR = "grey"

NO_HASH_USAGE = "payment hash required to select from payment list"


class PaymentError(Exception):
    """Payment JSON that can't be visualized."""


def _int_field(record, name, default=None):
    """Read an integer that LND encodes as a decimal string."""
    value = record.get(name, default)
    if value is None:
        raise PaymentError(f"missing field {name}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise PaymentError(f"invalid {name}: {value!r}") from None


def parse_hop(record, last=False):
    if not isinstance(record, dict):
        raise PaymentError("hop is not an object")
    return {
        "pub_key": record.get("pub_key") or "",
        "chan_id": _int_field(record, "chan_id", 0),
        # Only the final hop's amount (what the payee receives) is used
        "amt_to_forward": _int_field(record, "amt_to_forward", None if last else 0),
    }


def parse_route(record):
    if not isinstance(record, dict):
        raise PaymentError("missing field route")
    hops = record.get("hops") or []
    if not hops:
        raise PaymentError("route has no hops")
    return {
        "total_amt": _int_field(record, "total_amt"),
        "hops": [parse_hop(h, last=(i == len(hops) - 1)) for i, h in enumerate(hops)],
    }


def parse_htlc(record, index):
    """Normalize one HTLC attempt record, numbering errors by position."""
    if not isinstance(record, dict):
        raise PaymentError(f"htlc {index}: not an object")
    try:
        htlc = {
            "attempt_time_ns": _int_field(record, "attempt_time_ns"),
            # 0 marks an attempt that hasn't resolved yet
            "resolve_time_ns": _int_field(record, "resolve_time_ns", 0),
            "status": record.get("status") or "",
            "failure": None,
            "route": parse_route(record.get("route")),
        }
        if htlc["status"] == "FAILED":
            failure = record.get("failure")
            if not isinstance(failure, dict):
                raise PaymentError("FAILED without failure details")
            htlc["failure"] = {
                "code": failure.get("code") or "",
                "failure_source_index": _int_field(failure, "failure_source_index", 0),
            }
    except PaymentError as e:
        raise PaymentError(f"htlc {index}: {e}") from None
    return htlc


def parse_payment(record):
    """Normalize a payment record into plain dicts with integer fields."""
    if not isinstance(record, dict):
        raise PaymentError("payment is not an object")
    htlcs = record.get("htlcs") or []
    if not htlcs:
        raise PaymentError(f"payment {record.get('payment_hash', '')} has no htlcs")
    return {
        "payment_hash": record.get("payment_hash", ""),
        "htlcs": [parse_htlc(h, i) for i, h in enumerate(htlcs)],
    }


def select_payment(document, payment_hash=None):
    """Pick the payment to draw.

    A document with a ``payments`` list is a listpayments result and needs
    ``payment_hash`` to choose from it; anything else is taken as a single
    payment (payinvoice/sendpayment output). The first exact, case-sensitive
    hash match wins.
    """
    if not isinstance(document, dict):
        raise PaymentError("expected a JSON object")

    if "payments" in document:
        if not payment_hash:
            raise PaymentError(NO_HASH_USAGE)
        payments = document["payments"] or []
        if not isinstance(payments, list):
            raise PaymentError("payments is not a list")
        for record in payments:
            if isinstance(record, dict) and record.get("payment_hash") == payment_hash:
                return parse_payment(record)
        raise PaymentError(f"payment {payment_hash} not found")

    if payment_hash and document.get("payment_hash") != payment_hash:
        raise PaymentError(f"payment {payment_hash} not found")
    return parse_payment(document)


def route_text(route):
    """Short route label: first hop with its channel, then the later hops."""
    first = route["hops"][0]
    text = f"{first['pub_key'][:6]} ({first['chan_id']}) "
    for hop in route["hops"][1:]:
        text += " > " + hop["pub_key"][:6]
    return text


def _div(a, b):
    # Integer division truncating towards zero
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def time_axis(htlcs):
    """Return (t0, t1, scale) in nanoseconds for a list of HTLCs.

    t0 is the first attempt in list order, t1 the latest resolution plus
    RIGHT_PADDING_NS, and scale the number of nanoseconds per pixel.
    """
    t0 = htlcs[0]["attempt_time_ns"]
    resolved = [h["resolve_time_ns"] for h in htlcs if h["resolve_time_ns"] != 0]
    t1 = max(resolved, default=t0) + RIGHT_PADDING_NS
    scale = _div(t1 - t0, AXIS_WIDTH_PX)
    return t0, t1, scale


def htlc_bar(htlc, t0, t1, scale):
    """Return (start_px, width_px, color, label) for one HTLC."""
    start = _div(htlc["attempt_time_ns"] - t0, scale)
    if htlc["resolve_time_ns"] != 0:
        end = _div(htlc["resolve_time_ns"] - t0, scale)
    else:
        # Still pending: run to the right edge
        end = _div(t1 - t0, scale)

    route = htlc["route"]
    label = f"{route['total_amt']} sat ({route_text(route)})"
    status = htlc["status"]
    color = STATUS_COLORS.get(status, IN_FLIGHT_COLOR)
    if status == "FAILED":
        failure = htlc["failure"]
        label += f": {failure['code']} @ {failure['failure_source_index']}"

    return start, end - start, color, label


def is_settled(htlc):
    if htlc["status"] == "SUCCEEDED":
        return True
    return htlc["status"] == "FAILED" and htlc["failure"]["code"] in SETTLED_FAILURE_CODES


def settled_totals(htlcs):
    """Sum the delivered amount of every settled HTLC, keyed by route text."""
    totals = defaultdict(int)
    for h in htlcs:
        if is_settled(h):
            totals[route_text(h["route"])] += h["route"]["hops"][-1]["amt_to_forward"]
    return dict(totals)


def generate_htlc_row(htlc, t0, t1, scale):
    start, width, color, label = htlc_bar(htlc, t0, t1, scale)
    return (
        '<div class="container">'
        f'<div style="width:{start}px;"></div>'
        f'<div class="htlc" style="width:{width}px;background-color:{color};"></div>'
        f'<div class="text"><p>{label}</p></div></div>\n'
    )


def generate_settlement_summary(htlcs):
    totals = settled_totals(htlcs)
    lines = ["<br/><br/>"]
    for route in sorted(totals):
        lines.append(f"Settled via {route}: {totals[route]} sats<br/>\n")
    lines.append(f"<br/>Total settled: {sum(totals.values())} sats\n")
    return "".join(lines)


def generate_html(payment):
    """Generate the timing diagram page for a parsed payment."""
    htlcs = payment["htlcs"]
    t0, t1, scale = time_axis(htlcs)

    rows = "".join(generate_htlc_row(h, t0, t1, scale) for h in htlcs)
    summary = generate_settlement_summary(htlcs)

    return f"""<html>
<head>
    <link href='{FONT_URL}' rel='stylesheet' type='text/css'>
    <style>
        html {{
            width: {PAGE_WIDTH_PX}px;
            font-family: Open Sans;
        }}

        .container {{
            height: 25px;
            flex-direction: row;
            display: flex;
            margin-bottom: 5px;
            align-content: center;
        }}

        .text {{
            margin-left: 10px;
            display: flex;
            align-content: center;
            white-space: nowrap;
        }}

        p {{ margin: auto; }}
    </style>
</head>
<body>
{rows}{summary}</body>
</html>
"""


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="timing-diagram",
        description="Render the HTLC timing of a Lightning payment as HTML",
    )
    parser.add_argument("payment_hash", nargs="?",
                        help="hash of the payment to pick from a listpayments result")
    args = parser.parse_args(argv)

    try:
        document = json.load(sys.stdin)
        payment = select_payment(document, args.payment_hash)
        html = generate_html(payment)
    except (PaymentError, ValueError, OSError) as e:
        print(f"error: {e}")
        return 1

    sys.stdout.write(html)
    print(f"Rendered {len(payment['htlcs'])} HTLCs for payment {payment['payment_hash']}",
          file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
