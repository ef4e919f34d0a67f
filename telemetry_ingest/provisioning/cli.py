"""CLI de aprovisionamiento.

    python -m telemetry_ingest.provisioning.cli --uid temp001 --label "Salón" --room-name "Salón"
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from common.config import get_settings

from ..errors import IngestError
from ..infrastructure.persistence.migrations import MigrationRunner
from ..infrastructure.persistence.store import TelemetryStore
from .service import DEFAULT_MODEL, provision_device

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Provision a telemetry device")
    p.add_argument("--uid", required=True, help="external device id (topic deviceId)")
    p.add_argument("--label", required=True)
    p.add_argument("--model", default=DEFAULT_MODEL)
    p.add_argument("--room-name", default=None, help="room to place the device in")
    p.add_argument("--database-url", default=None, help="overrides DATABASE_URL")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
    args = build_parser().parse_args(argv)

    settings = get_settings()
    if args.database_url:
        settings = settings.with_overrides(database_url=args.database_url)

    store = TelemetryStore.from_settings(settings)
    try:
        MigrationRunner().run(store)
        with store.transaction() as storage:
            result = provision_device(
                storage,
                args.uid,
                args.label,
                model=args.model,
                room_name=args.room_name,
            )
    except IngestError as e:
        logger.error("Provisioning failed: %s", e.message)
        return 1
    finally:
        store.dispose()

    logger.info(
        "Device %s id=%s created=%s room=%s",
        result.device.uid,
        result.device.id,
        result.device_created,
        result.room.room_id if result.room else None,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
