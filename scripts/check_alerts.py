import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from sqlalchemy import func

from rentcore.core.config import get_config
from rentcore.database.db import get_db_session
from rentcore.models import Contract, ContractStatus, Payment, PaymentStatus

TAIL_LINES = 5000

TASK_FAILED_THRESHOLD = 3
RATE_LIMITED_THRESHOLD = 20
STALE_PENDING_PAYMENTS_THRESHOLD = 50

log_path = Path(get_config().LOG_FILE or "rentcore.log")
tail = []
if log_path.exists():
    tail = log_path.read_text(encoding="utf-8", errors="ignore").splitlines()[-TAIL_LINES:]

task_failed = sum('"event": "task.failed"' in line for line in tail)
rate_limited = sum('"event": "payments.poll.rate_limited"' in line for line in tail)

with get_db_session() as db:
    pending_payments = db.query(func.count(Payment.id)).filter(Payment.status == PaymentStatus.PENDING).scalar()
    overdue_contracts = db.query(func.count(Contract.id)).filter(Contract.status == ContractStatus.OVERDUE).scalar()

alerts = []
if task_failed >= TASK_FAILED_THRESHOLD:
    alerts.append(f"task.failed count={task_failed}")
if rate_limited >= RATE_LIMITED_THRESHOLD:
    alerts.append(f"payments.poll.rate_limited count={rate_limited}")
if int(pending_payments or 0) >= STALE_PENDING_PAYMENTS_THRESHOLD:
    alerts.append(f"pending_payments={pending_payments}")

if alerts:
    print("ALERT:", " | ".join(alerts))
    raise SystemExit(2)

print(f"OK: task_failed={task_failed}, rate_limited={rate_limited}, pending_payments={pending_payments}, overdue_contracts={overdue_contracts}")
