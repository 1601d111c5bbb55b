#!/usr/bin/env python3
"""Seed a local database with demo recurring-expense series.

This script creates:
1. The schema (templates, expenses, audit log) if it does not exist
2. One team per demo firm
3. A set of recurring expenses per firm, each with its generated series

Usage:
    python scripts/seed_recurring.py
    DATABASE_URL=sqlite+aiosqlite:///./demo.db python scripts/seed_recurring.py
"""

import asyncio
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import uuid4

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from arq_cashflow.audit import SqlAuditSink
from arq_cashflow.config import configure_logging, get_settings
from arq_cashflow.errors import SeriesError
from arq_cashflow.models import TenantContext
from arq_cashflow.scheduling import add_months
from arq_cashflow.service import RecurringExpenseService
from arq_cashflow.store import SqlSeriesStore

# ============================================================================
# FIRM DEFINITIONS
# ============================================================================

FIRMS: dict[str, dict[str, Any]] = {
    "atelier": {
        "name": "Atelier Costa Arquitetura",
        "owner_email": "ana@ateliercosta.example",
        "expenses": [
            {
                "description": "Studio rent",
                "amount": Decimal("4500.00"),
                "category": "rent",
                "frequency": "monthly",
                "day_of_month": 5,
                "vendor": "Imobiliária Central",
                "invoice_number": "ALG",
                "expense_type": "operational",
            },
            {
                "description": "CAD licenses",
                "amount": Decimal("890.00"),
                "category": "software",
                "frequency": "monthly",
                "day_of_month": 31,
                "vendor": "Autodesk",
                "expense_type": "operational",
            },
            {
                "description": "Professional liability insurance",
                "amount": Decimal("3200.00"),
                "category": "insurance",
                "frequency": "annual",
                "vendor": "Seguradora Alfa",
                "expense_type": "administrative",
            },
        ],
    },
    "linha": {
        "name": "Linha Reta Engenharia",
        "owner_email": "bruno@linhareta.example",
        "expenses": [
            {
                "description": "Accounting services",
                "amount": Decimal("1200.00"),
                "category": "services",
                "frequency": "monthly",
                "day_of_month": 10,
                "vendor": "Contábil Prime",
                "expense_type": "administrative",
            },
            {
                "description": "Site equipment maintenance",
                "amount": Decimal("650.00"),
                "category": "maintenance",
                "frequency": "quarterly",
                "expense_type": "project",
            },
            {
                "description": "Team lunch",
                "amount": Decimal("380.00"),
                "category": "meals",
                "frequency": "weekly",
                "interval": 2,
                "expense_type": "operational",
            },
        ],
    },
}


def _start_date(today: date, months_back: int = 3) -> date:
    return add_months(today.replace(day=1), -months_back)


async def seed_firm(service: RecurringExpenseService, firm: dict[str, Any]) -> int:
    """Create the recurring expenses of one firm. Returns occurrences created."""
    ctx = TenantContext(team_id=uuid4(), user_id=uuid4(), user_email=firm["owner_email"])
    start = _start_date(date.today())
    total = 0

    print(f"\n  {firm['name']} (team {ctx.team_id})")
    for expense in firm["expenses"]:
        fields = {"start_date": start, **expense}
        try:
            created = await service.create_template_and_generate(ctx, fields)
        except SeriesError as e:
            print(f"    ✗ {expense['description']}: {e.message}")
            continue
        paid = sum(1 for o in created.occurrences if o.is_paid)
        total += len(created.occurrences)
        print(
            f"    ✓ {expense['description']}: {len(created.occurrences)} occurrences "
            f"({paid} paid), next due {created.template.next_due}"
        )

    summary = await service.get_summary(ctx)
    print(f"    Active recurring total: {summary.total_amount}")
    return total


async def main():
    """Main entry point."""
    settings = get_settings()
    configure_logging(level="WARNING")

    print("=" * 60)
    print("ArqCashflow - Recurring Expense Seeding")
    print("=" * 60)
    print(f"\nDatabase: {settings.database_url}")

    store = SqlSeriesStore.from_settings(settings)
    try:
        print("\n" + "-" * 60)
        print("Step 1: Creating Schema")
        print("-" * 60)
        await store.create_schema()
        print("  ✓ Tables ready")

        print("\n" + "-" * 60)
        print("Step 2: Seeding Firms")
        print("-" * 60)
        service = RecurringExpenseService(store, audit_sink=SqlAuditSink(store.sessions))
        total = 0
        for firm in FIRMS.values():
            total += await seed_firm(service, firm)
    finally:
        await store.dispose()

    print("\n" + "=" * 60)
    print("SEEDING COMPLETE!")
    print("=" * 60)
    print(f"\nCreated {total} occurrences across {len(FIRMS)} firms")


if __name__ == "__main__":
    asyncio.run(main())
