"""Barrido manual de grants y device codes vencidos.

Uso típico:
  PYTHONPATH=. python scripts/cleanup_expired.py
  PYTHONPATH=. python scripts/cleanup_expired.py --yes

Características:
  - Dry-run por defecto: sólo cuenta lo que está vencido.
  - Con --yes ejecuta un barrido completo (mismo código que el reaper de la app).
  - --ensure-indexes crea colecciones/índices antes de barrer.
"""
from __future__ import annotations

import argparse
import asyncio

from grantstore.core.config import settings
from grantstore.core.logging import setup_logging
from grantstore.infrastructure.db.bootstrap import ensure_collections
from grantstore.infrastructure.db.mongo_async import close_async_db
from grantstore.repositories import device_flow_repo, persisted_grant_repo
from grantstore.services.token_cleanup_service import remove_expired_grants


async def _run(args: argparse.Namespace) -> int:
    if args.ensure_indexes:
        await ensure_collections()

    if not args.yes:
        grants = await persisted_grant_repo.get_expired()
        codes = await device_flow_repo.get_expired()
        print(f"[dry-run] grants vencidos: {len(grants)}")
        print(f"[dry-run] device codes vencidos: {len(codes)}")
        print("Usa --yes para borrar.")
        return 0

    result = await remove_expired_grants()
    print(f"grants borrados: {result.grants_removed}")
    print(f"device codes borrados: {result.device_codes_removed}")
    return 1 if result.failed else 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Limpia grants y device codes vencidos")
    ap.add_argument("--yes", action="store_true", help="Confirma el borrado (sin esto es dry-run)")
    ap.add_argument("--ensure-indexes", action="store_true", help="Crea colecciones/índices antes de barrer")
    ap.add_argument("--log-level", default=settings.log_level)
    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(args.log_level)
    try:
        return asyncio.run(_run(args))
    finally:
        close_async_db()


if __name__ == "__main__":
    raise SystemExit(main())
