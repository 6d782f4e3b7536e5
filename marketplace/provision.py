"""
One-time schema provisioning.

    python -m marketplace.provision

Creates any missing tables; existing tables are left as they are. The service
itself never changes the schema.
"""
import logging
from pathlib import Path

from .db import get_conn
from .logs import setup_logging

logger = logging.getLogger(__name__)

SCHEMA_FILE = Path(__file__).with_name("schema.sql")


def provision(conn) -> None:
    conn.execute(SCHEMA_FILE.read_text(encoding="utf-8"))


def main() -> None:
    setup_logging()
    with get_conn() as conn:
        provision(conn)
    logger.info("Schema provisioned from %s", SCHEMA_FILE.name)


if __name__ == "__main__":
    main()
