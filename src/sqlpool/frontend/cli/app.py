"""
Demo program: draw a connection from the pool, run one query, print the rows.

Run it with:

    python main.py --database ./demo.db --query "SELECT type, name FROM sqlite_master"

Settings not given on the command line come from ``SQLPOOL_*`` environment
variables (see :meth:`PoolConfig.from_env`).
"""

from __future__ import annotations

import argparse
import logging
import sqlite3
from typing import Dict, List, Optional

from sqlpool.core.config import PoolConfig
from sqlpool.core.exceptions import SqlPoolError
from sqlpool.database.pool import ConnectionPool, create_pool
from sqlpool.frontend.cli.logging_config import configure_logging

logger = logging.getLogger(__name__)

DEFAULT_QUERY = "SELECT type, name FROM sqlite_master ORDER BY name"


def list_contents(pool: ConnectionPool, query: str, timeout: Optional[float] = None) -> List[Dict]:
    """Run ``query`` on a pooled connection; the connection goes back afterwards."""
    with pool.connection(timeout) as conn:
        return conn.fetch_all(query)


def format_row(row: Dict) -> str:
    return ", ".join(f"{key}: {value}" for key, value in row.items())


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="List the result of a query using a pooled SQLite connection."
    )
    parser.add_argument(
        "--database",
        default=None,
        help="Database path or file: URI (default: $SQLPOOL_DATABASE or ./sqlpool.db)",
    )
    parser.add_argument(
        "--min-size",
        type=int,
        default=None,
        help="Minimum pool size (default: $SQLPOOL_MIN_SIZE or 5)",
    )
    parser.add_argument(
        "--max-size",
        type=int,
        default=None,
        help="Maximum pool size (default: $SQLPOOL_MAX_SIZE or 10)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for a free connection (default: $SQLPOOL_ACQUIRE_TIMEOUT or 30)",
    )
    parser.add_argument(
        "--query",
        default=DEFAULT_QUERY,
        help="SQL query to run (default: list schema objects)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log pool activity at debug level",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    overrides = {
        name: value
        for name, value in (
            ("database", args.database),
            ("min_size", args.min_size),
            ("max_size", args.max_size),
            ("acquire_timeout", args.timeout),
        )
        if value is not None
    }

    try:
        config = PoolConfig.from_env(**overrides)
        pool = create_pool(config)
    except SqlPoolError as e:
        logger.error("could not create connection pool: %s", e)
        return 1

    try:
        rows = list_contents(pool, args.query)
    except SqlPoolError as e:
        logger.error("could not get a connection: %s", e)
        return 1
    except sqlite3.Error as e:
        logger.error("query failed: %s", e)
        return 1
    finally:
        pool.shutdown()

    print(f"\nResult set returned ({len(rows)} rows):")
    for row in rows:
        print(format_row(row))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
