"""
runwaykit quickstart — score a month of spend, check runway, gate a login.

Run:
    python examples/quickstart.py
"""

import random
from datetime import date, timedelta

from runwaykit import (
    AnalyticsStack,
    Settings,
    Transaction,
    rate_limit_headers,
)

VENDORS = [
    ("SaaS", "Slack", 210),
    ("SaaS", "Notion", 99),
    ("Marketing", "Google Ads", 480),
    ("Office", "Staples", 55),
]


def main():
    # 1. Create the stack (no background sweeper for a one-shot script)
    stack = AnalyticsStack.create(settings=Settings(auto_sweep=False))

    # 2. Six months of history with a little noise
    start = date.today() - timedelta(days=180)
    history = []
    for month in range(6):
        for category, merchant, typical in VENDORS:
            history.append(Transaction(
                id=f"h-{month}-{merchant}",
                amount=round(typical * random.uniform(0.9, 1.1), 2),
                date=start + timedelta(days=30 * month),
                category=category,
                merchant=merchant,
            ))

    # 3. This month: one spike, one double charge
    today = date.today()
    current = [
        Transaction("tx-1", 215, today, "SaaS", "Slack"),
        Transaction("tx-2", 4800, today, "Marketing", "Google Ads"),
        Transaction("tx-3", 99, today, "SaaS", "Notion"),
        Transaction("tx-4", 99, today, "SaaS", "Notion"),
    ]
    results = stack.detect(current, history, contamination=0.05)

    print("=" * 50)
    print("ANOMALIES")
    print("=" * 50)
    for r in results:
        flag = "!!" if r.is_anomaly else "ok"
        print(f"  [{flag}] {r.transaction.merchant:12s} ${r.transaction.amount:>9,.2f}  {r.reason.value}")

    # 4. Runway from the dashboard aggregates
    metrics = stack.runway(
        cash_balance=640_000, monthly_burn=52_000,
        previous_burn=47_500, mrr=14_000, previous_mrr=12_800,
    )
    d = metrics.to_dict()
    print(f"\n  Runway:   {d['runway_display']} ({d['status']})")
    print(f"  Net burn: ${metrics.net_burn:,.0f}/mo ({metrics.burn_change_pct:+.1f}% MoM gross)")

    # 5. Brute-force a login endpoint
    for _ in range(11):
        result = stack.check_rate_limit("203.0.113.50", "auth")
    print(f"\n  Login #11 allowed={result.allowed} headers={rate_limit_headers(result)}")

    stack.close()


if __name__ == "__main__":
    main()
