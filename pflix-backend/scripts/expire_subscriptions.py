import argparse
from datetime import datetime

from pflix_billing.db import SessionLocal
from pflix_billing.domain.billing.periods import as_utc, utcnow
from pflix_billing.services.subscriptions import expire_subscriptions, expired_subscription_ids


def run(dry_run: bool, now: datetime | None = None) -> dict[str, int]:
    now = now or utcnow()
    session = SessionLocal()
    try:
        candidates = len(expired_subscription_ids(session, now))
        if dry_run:
            session.rollback()
            return {"candidates": candidates, "expired": 0}
        expired = expire_subscriptions(session, now=now)
    finally:
        session.close()
    return {"candidates": candidates, "expired": expired}


def main() -> None:
    parser = argparse.ArgumentParser(description="Expira assinaturas ativas cujo periodo terminou.")
    parser.add_argument("--now", help="Data/hora de referencia ISO 8601 (opcional).")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Nao aplica mudancas (apenas simula).",
    )
    args = parser.parse_args()

    now = as_utc(datetime.fromisoformat(args.now)) if args.now else None
    result = run(args.dry_run, now)
    mode = "SIMULACAO" if args.dry_run else "APLICADO"
    print(f"{mode}: candidatas={result['candidates']} | expiradas={result['expired']}")


if __name__ == "__main__":
    main()
