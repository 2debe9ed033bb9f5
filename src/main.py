from __future__ import annotations

import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import Sequence

from config import config
from db.db import init_db
from domain.base_types import CostBasisMethod, OrganizationId
from services.accounting import AccountingCore
from services.errors import AccountingError
from utils.formatting import render_cost_basis_summary, render_reconciliation

logger = logging.getLogger(__name__)


def run_cost_basis(db_file: Path, organization_id: str, token_symbol: str, method: str | None) -> None:
    session = init_db(db_file=db_file)
    summary = AccountingCore(session).compute_cost_basis(OrganizationId(organization_id), token_symbol, method)
    render_cost_basis_summary(summary)


def run_reconciliation(
    db_file: Path, organization_id: str, period_start: datetime | None, period_end: datetime | None
) -> None:
    session = init_db(db_file=db_file)
    run, window = AccountingCore(session).auto_run(OrganizationId(organization_id), period_start, period_end)
    render_reconciliation(run, window)


def main(argv: Sequence[str] | None = None) -> int:
    settings = config()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    parser = argparse.ArgumentParser(description="Treasury accounting core: cost basis and reconciliation.")
    parser.add_argument("--db", type=Path, default=settings.db_file)
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the database schema.")

    cost_basis = subparsers.add_parser("cost-basis", help="Recompute cost basis for one token.")
    cost_basis.add_argument("--org", required=True)
    cost_basis.add_argument("--token", required=True)
    cost_basis.add_argument("--method", choices=[method.value for method in CostBasisMethod], type=str.upper)

    reconcile = subparsers.add_parser("reconcile", help="Run and store a reconciliation for a period.")
    reconcile.add_argument("--org", required=True)
    reconcile.add_argument("--start", type=datetime.fromisoformat)
    reconcile.add_argument("--end", type=datetime.fromisoformat)

    args = parser.parse_args(argv)

    try:
        if args.command == "init-db":
            logger.info("Initializing DB at %s", args.db)
            init_db(db_file=args.db)
        elif args.command == "cost-basis":
            run_cost_basis(args.db, args.org, args.token, args.method)
        elif args.command == "reconcile":
            run_reconciliation(args.db, args.org, args.start, args.end)
    except AccountingError as err:
        logger.error("%s", err)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
