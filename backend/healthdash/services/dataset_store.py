"""Snapshot-replace writes shared by the dataset adapters."""

import logging
from typing import Any

from sqlalchemy import delete, insert
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


async def replace_snapshot(
    db: AsyncSession,
    model,
    rows: list[dict[str, Any]],
    *criteria,
) -> int:
    """
    Replace the rows of model matching criteria (all rows if none) with rows.

    Delete and insert share one transaction, so a failed write leaves the
    previous snapshot in place.

    Returns:
        Number of rows inserted
    """
    stmt = delete(model)
    if criteria:
        stmt = stmt.where(*criteria)

    try:
        result = await db.execute(stmt)
        if rows:
            await db.execute(insert(model), rows)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        f"Replaced {model.__tablename__} snapshot: deleted={result.rowcount} inserted={len(rows)}"
    )
    return len(rows)
