"""
CLI entry point — run with `python -m runwaykit`.

Quick anomaly scans, runway checks, and rate-limit simulations from the
terminal.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date


def _load_transactions(path: str):
    """Read a JSON array or JSONL file of transaction objects."""
    from .types import Transaction

    with open(path) as f:
        text = f.read()

    stripped = text.lstrip()
    if stripped.startswith("["):
        rows = json.loads(stripped)
    else:
        rows = [json.loads(line) for line in text.splitlines() if line.strip()]
    return [Transaction.from_dict(row) for row in rows]


def cmd_anomalies(args):
    """Score a transaction file against an optional history file."""
    from .anomaly import AnomalyDetector
    from .config import load_settings

    try:
        txs = _load_transactions(args.file)
        history = _load_transactions(args.history) if args.history else txs
    except FileNotFoundError as e:
        print(f"File not found: {e.filename}", file=sys.stderr)
        return 1
    except json.JSONDecodeError as e:
        print(f"Invalid JSON: {e}", file=sys.stderr)
        return 1

    settings = load_settings()
    contamination = (
        args.contamination if args.contamination is not None
        else settings.default_contamination
    )
    detector = AnomalyDetector.from_settings(settings)
    results = detector.detect(txs, history, contamination)
    flagged = [r for r in results if r.is_anomaly]

    if args.json:
        print(json.dumps({
            "summary": {
                "totalTransactions": len(results),
                "anomaliesDetected": len(flagged),
            },
            "results": [r.to_dict() for r in results],
        }, indent=2))
        return 0

    rate = (len(flagged) / len(results) * 100) if results else 0.0
    print("=== runwaykit anomalies ===")
    print(f"Transactions: {len(results)}")
    print(f"Anomalies:    {len(flagged)} ({rate:.1f}%)")
    print(f"Threshold:    z > {detector.stats().get('z_threshold', 0):.2f}")

    if flagged:
        print("\n--- Flagged ---")
        for r in flagged:
            tx = r.transaction
            print(
                f"  {tx.id:12s} ${tx.amount:>12,.2f}  "
                f"{tx.category}/{tx.merchant:20s} "
                f"score={r.score:6.2f}  {r.reason.value}"
            )
    return 0


def cmd_runway(args):
    """Show runway and burn metrics for the given figures."""
    from .runway import summarize_runway

    metrics = summarize_runway(
        cash_balance=args.cash,
        monthly_burn=args.burn,
        previous_burn=args.previous_burn,
        mrr=args.revenue,
        previous_mrr=args.previous_revenue,
    )
    if args.json:
        print(json.dumps(metrics.to_dict(), indent=2))
        return 0

    d = metrics.to_dict()
    print("=== runwaykit runway ===")
    print(f"Cash:         ${metrics.cash_balance:,.2f}")
    print(f"Gross Burn:   ${metrics.monthly_burn:,.2f}/mo ({metrics.burn_change_pct:+.1f}% MoM)")
    print(f"Net Burn:     ${metrics.net_burn:,.2f}/mo")
    print(f"Runway:       {d['runway_display']} [{metrics.status.value}]")
    return 0


def cmd_ratelimit(args):
    """Fire a burst of requests at one policy and print each decision."""
    from .ratelimit import RateLimitConfigError, RateLimiter

    limiter = RateLimiter(auto_sweep=False)
    try:
        policy = limiter.policy(args.policy)
    except RateLimitConfigError as e:
        print(e.args[0], file=sys.stderr)
        return 1

    requests = args.requests or policy.max_requests + 2
    print(
        f"=== runwaykit ratelimit: '{args.policy}' "
        f"{policy.max_requests}/{policy.window_seconds:g}s ==="
    )
    allowed = 0
    for i in range(requests):
        result = limiter.check(args.identifier, args.policy)
        allowed += result.allowed
        status = "ok" if result.allowed else ("BLOCKED" if result.blocked else "limited")
        retry = f" retry_after={result.retry_after:.0f}s" if result.retry_after else ""
        print(f"  #{i + 1:<4d} {status:8s} remaining={result.remaining}{retry}")

    print(f"\nAllowed {allowed} of {requests}")
    limiter.close()
    return 0


def cmd_demo(args):
    """Run a quick demo showing the core in action."""
    from . import AnalyticsStack, Settings, Transaction

    print("=== runwaykit demo ===\n")

    stack = AnalyticsStack.create(settings=Settings(auto_sweep=False))
    today = date.today()
    history = [
        Transaction("h-1", 200, date(2024, 11, 1), "SaaS", "Slack"),
        Transaction("h-2", 220, date(2024, 10, 1), "SaaS", "Slack"),
        Transaction("h-3", 99, date(2024, 11, 1), "SaaS", "Notion"),
        Transaction("h-4", 450, date(2024, 11, 1), "Marketing", "Google Ads"),
        Transaction("h-5", 520, date(2024, 10, 1), "Marketing", "Google Ads"),
        Transaction("h-6", 72000, date(2024, 11, 1), "Payroll", "Gusto"),
        Transaction("h-7", 70000, date(2024, 10, 1), "Payroll", "Gusto"),
        Transaction("h-8", 1200, date(2024, 11, 1), "Office", "WeWork"),
        Transaction("h-9", 45, date(2024, 11, 1), "Office", "Staples"),
        Transaction("h-10", 60, date(2024, 10, 1), "Office", "Staples"),
    ]
    current = [
        Transaction("tx-1", 250, today, "SaaS", "Slack"),
        Transaction("tx-2", 99, today, "SaaS", "Notion"),
        Transaction("tx-3", 15000, today, "SaaS", "AWS"),
        Transaction("tx-4", 500, today, "Marketing", "Google Ads"),
        Transaction("tx-5", 75000, today, "Payroll", "Gusto"),
        Transaction("tx-6", 75000, today, "Payroll", "Gusto"),
        Transaction("tx-7", 1200, today, "Office", "WeWork"),
        Transaction("tx-8", 50, today, "Office", "Staples"),
        Transaction("tx-9", 8500, today, "Office", "Staples"),
    ]

    results = stack.detect(current, history, contamination=0.1)
    print("Anomaly scan:")
    for r in results:
        mark = "!!" if r.is_anomaly else "  "
        tx = r.transaction
        print(f"  {mark} {tx.id:6s} ${tx.amount:>10,.2f} {tx.merchant:12s} {r.reason.value}")

    metrics = stack.runway(cash_balance=500_000, monthly_burn=48_000,
                           previous_burn=45_000, mrr=12_000, previous_mrr=11_000)
    print(f"\nRunway: {metrics.to_dict()['runway_display']} ({metrics.status.value})")

    print("\nRate limit (auth, 12 attempts):")
    for _ in range(12):
        result = stack.check_rate_limit("198.51.100.4", "auth")
    print(f"  last attempt allowed={result.allowed} blocked={result.blocked}")

    stack.close()
    return 0


def cmd_version(args):
    from . import __version__
    print(f"runwaykit {__version__}")
    return 0


def main(argv=None):
    from .config import configure_logging

    parser = argparse.ArgumentParser(
        prog="runwaykit",
        description="Startup financial analytics core CLI",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable logging output")
    sub = parser.add_subparsers(dest="command")

    # anomalies
    p_anom = sub.add_parser("anomalies", help="Detect anomalous transactions in a JSON/JSONL file")
    p_anom.add_argument("file", help="Transactions to score")
    p_anom.add_argument("--history", default=None, help="Historical transactions (defaults to FILE)")
    p_anom.add_argument("--contamination", type=float, default=None, help="Expected anomaly fraction")
    p_anom.add_argument("--json", action="store_true", help="Print raw JSON results")
    p_anom.set_defaults(func=cmd_anomalies)

    # runway
    p_run = sub.add_parser("runway", help="Compute runway and burn metrics")
    p_run.add_argument("--cash", type=float, required=True, help="Current cash balance")
    p_run.add_argument("--burn", type=float, required=True, help="Gross monthly burn")
    p_run.add_argument("--previous-burn", type=float, default=0.0)
    p_run.add_argument("--revenue", type=float, default=0.0, help="Monthly recurring revenue")
    p_run.add_argument("--previous-revenue", type=float, default=0.0)
    p_run.add_argument("--json", action="store_true", help="Print raw JSON metrics")
    p_run.set_defaults(func=cmd_runway)

    # ratelimit
    p_rl = sub.add_parser("ratelimit", help="Simulate a request burst against a policy")
    p_rl.add_argument("policy", help="Policy name, e.g. default, auth, export")
    p_rl.add_argument("--requests", type=int, default=None)
    p_rl.add_argument("--identifier", default="127.0.0.1")
    p_rl.set_defaults(func=cmd_ratelimit)

    # demo
    p_demo = sub.add_parser("demo", help="Run a quick demo")
    p_demo.set_defaults(func=cmd_demo)

    # version
    p_ver = sub.add_parser("version", help="Show version")
    p_ver.set_defaults(func=cmd_version)

    args = parser.parse_args(argv)
    if args.verbose:
        configure_logging()

    if not args.command:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
