#===========================================================================
# labelflow/store.py
# Data store access: order / invoice projections, label records, logos,
# accounts and print bookkeeping. All functions open their own session.
#===========================================================================

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import case, func, select, update

from labelflow.db import get_sessionmaker
from labelflow.errors import NotFoundError
from labelflow.models.records import Account, Invoice, LabelRecord, Logo, Order, OrderItem

logger = logging.getLogger("uvicorn.error")

LABEL_SAVED = "label saved"
PRINTED = "printed"
REPRINTED = "reprinted"

PRINT_BATCH_SIZE = 50


# ---------------------------
# Accounts / logos
# ---------------------------

async def get_accounts() -> List[Account]:
    async with get_sessionmaker()() as session:
        rows = await session.scalars(select(Account).order_by(Account.company))
        return list(rows)


async def get_account_token(company: str) -> Optional[str]:
    async with get_sessionmaker()() as session:
        acc = await session.get(Account, company)
        return acc.token if acc else None


async def save_account(company: str, token: str | None) -> None:
    async with get_sessionmaker()() as session:
        await session.merge(Account(company=company, token=token))
        await session.commit()


async def get_logo(store_id: str | None, default_name: str) -> Optional[str]:
    """Base64 logo for a store, falling back to the default logo."""
    async with get_sessionmaker()() as session:
        if store_id:
            logo = await session.get(Logo, str(store_id))
            if logo:
                return logo.base64
        logo = await session.get(Logo, default_name)
        return logo.base64 if logo else None


async def save_logo(name: str, b64: str) -> None:
    async with get_sessionmaker()() as session:
        await session.merge(Logo(name=name, base64=b64))
        await session.commit()


# ---------------------------
# Orders / items / invoices
# ---------------------------

async def upsert_order(payload: Dict[str, Any]) -> None:
    async with get_sessionmaker()() as session:
        await session.merge(Order(**payload))
        await session.commit()


async def upsert_items(items: Iterable[Dict[str, Any]]) -> int:
    count = 0
    async with get_sessionmaker()() as session:
        for row in items:
            await session.merge(OrderItem(**row))
            count += 1
        await session.commit()
    return count


async def upsert_invoice(payload: Dict[str, Any]) -> None:
    async with get_sessionmaker()() as session:
        await session.merge(Invoice(**payload))
        await session.commit()


async def get_order_by_number(order_number: str) -> Optional[Order]:
    async with get_sessionmaker()() as session:
        return await session.scalar(select(Order).where(Order.order_number == order_number).limit(1))


async def get_invoice_by_number(order_number: str) -> Optional[Invoice]:
    async with get_sessionmaker()() as session:
        return await session.scalar(select(Invoice).where(Invoice.order_number == order_number).limit(1))


async def get_items(order_number: str) -> List[OrderItem]:
    async with get_sessionmaker()() as session:
        rows = await session.scalars(
            select(OrderItem).where(OrderItem.order_number == order_number).order_by(OrderItem.sku)
        )
        return list(rows)


async def get_first_sku(order_number: str) -> Optional[str]:
    async with get_sessionmaker()() as session:
        return await session.scalar(
            select(func.min(OrderItem.sku)).where(OrderItem.order_number == order_number)
        )


# ---------------------------
# Label records
# ---------------------------

async def upsert_label_record(order_id: str, company: str, store_id: str, order_number: str) -> LabelRecord:
    """Create the record on first sync; later syncs only refresh identity fields."""
    async with get_sessionmaker()() as session:
        rec = await session.get(LabelRecord, order_id)
        if rec is None:
            rec = LabelRecord(order_id=order_id, print_count=0)
            session.add(rec)
        rec.company = company
        rec.store_id = store_id
        rec.order_number = order_number
        await session.commit()
        return rec


async def get_label_record(order_id: str) -> Optional[LabelRecord]:
    async with get_sessionmaker()() as session:
        return await session.get(LabelRecord, order_id)


async def get_label_record_by_number(order_number: str) -> Optional[LabelRecord]:
    async with get_sessionmaker()() as session:
        return await session.scalar(select(LabelRecord).where(LabelRecord.order_number == order_number))


async def mark_label_saved(order_id: str, label_id: Any, link: str) -> None:
    async with get_sessionmaker()() as session:
        await session.execute(
            update(LabelRecord)
            .where(LabelRecord.order_id == order_id)
            .values(
                downloaded_state=LABEL_SAVED,
                last_error=None,
                label_id=str(label_id) if label_id is not None else None,
                link=link,
                updated_at=datetime.utcnow(),
            )
        )
        await session.commit()


async def record_label_error(order_id: str, message: str) -> None:
    async with get_sessionmaker()() as session:
        await session.execute(
            update(LabelRecord)
            .where(LabelRecord.order_id == order_id)
            .values(last_error=message, updated_at=datetime.utcnow())
        )
        await session.commit()


async def pending_label_records(limit: int = 20) -> List[LabelRecord]:
    """Records whose carrier label was never fetched, oldest first."""
    async with get_sessionmaker()() as session:
        rows = await session.scalars(
            select(LabelRecord)
            .where(LabelRecord.link.is_(None))
            .order_by(LabelRecord.created_at.asc())
            .limit(limit)
        )
        return list(rows)


async def label_records_by_state(downloaded_state: Optional[str]) -> List[LabelRecord]:
    async with get_sessionmaker()() as session:
        if downloaded_state is None:
            cond = LabelRecord.downloaded_state.is_(None)
        else:
            cond = LabelRecord.downloaded_state == downloaded_state
        rows = await session.scalars(
            select(LabelRecord).where(cond).order_by(LabelRecord.created_at.desc())
        )
        return list(rows)


# ---------------------------
# Print bookkeeping
# ---------------------------

def _print_increment_values() -> Dict[str, Any]:
    # SET expressions read the pre-update row, so the CASE sees the old count
    return {
        "print_count": LabelRecord.print_count + 1,
        "print_state": case((LabelRecord.print_count >= 1, REPRINTED), else_=PRINTED),
        "updated_at": datetime.utcnow(),
    }


async def register_print(order_number: str) -> int:
    """Atomically count one print of an order and return the new count."""
    async with get_sessionmaker()() as session:
        result = await session.execute(
            update(LabelRecord)
            .where(LabelRecord.order_number == order_number)
            .values(**_print_increment_values())
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            await session.rollback()
            raise NotFoundError(f"Label record for order {order_number} not found.")
        count = await session.scalar(
            select(LabelRecord.print_count).where(LabelRecord.order_number == order_number)
        )
        await session.commit()
        return int(count or 0)


async def register_prints(order_numbers: List[str], batch_size: int = PRINT_BATCH_SIZE) -> int:
    """Count one print for each order, ``batch_size`` orders per UPDATE."""
    updated = 0
    for i in range(0, len(order_numbers), batch_size):
        chunk = order_numbers[i:i + batch_size]
        try:
            async with get_sessionmaker()() as session:
                result = await session.execute(
                    update(LabelRecord)
                    .where(LabelRecord.order_number.in_(chunk))
                    .values(**_print_increment_values())
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                updated += result.rowcount or 0
        except Exception as e:
            logger.error("[PRINT] failed to update print status for %d orders: %s", len(chunk), e)
    return updated


async def orders_by_filter(filters: Dict[str, Any]) -> List[Dict[str, str]]:
    """
    Invoiced orders of one store matching the batch-print filters.
    Keys: store_id (required), date_from, date_to, status, order_number, print_status.
    """
    q = select(Invoice.store_id, Invoice.order_number).where(Invoice.store_id == str(filters["store_id"]))
    if filters.get("date_from"):
        q = q.where(Invoice.issue_date >= filters["date_from"])
    if filters.get("date_to"):
        q = q.where(Invoice.issue_date <= f"{filters['date_to']}T23:59:59")
    if filters.get("status") not in (None, ""):
        q = q.where(Invoice.status == int(filters["status"]))
    if filters.get("order_number"):
        q = q.where(Invoice.order_number.ilike(f"%{filters['order_number']}%"))

    async with get_sessionmaker()() as session:
        rows = [
            {"store_id": r.store_id, "order_number": r.order_number}
            for r in (await session.execute(q)).all()
            if r.order_number
        ]
        wanted = filters.get("print_status")
        if not wanted or not rows:
            return rows
        states = dict(
            (await session.execute(
                select(LabelRecord.order_number, LabelRecord.print_state)
                .where(LabelRecord.order_number.in_([r["order_number"] for r in rows]))
            )).all()
        )

    def _keep(order_number: str) -> bool:
        state = states.get(order_number)
        if wanted == "pending":
            return not state
        if wanted in (PRINTED, REPRINTED):
            return state == wanted
        return True

    return [r for r in rows if _keep(r["order_number"])]
