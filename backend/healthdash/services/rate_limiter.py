"""Per-IP manual refresh quota and the deferred request buffer."""

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from healthdash.config import get_settings
from healthdash.database import upsert_insert
from healthdash.models import ManualRefreshRequest, RateLimitWindow
from healthdash.services.clock import Clock, as_utc, utcnow

logger = logging.getLogger(__name__)
settings = get_settings()

EXECUTED_REQUEST_RETENTION = timedelta(days=7)


def window_start(now: datetime, minutes: int) -> datetime:
    """Start of the window containing now; windows are aligned to UTC midnight."""
    now = as_utc(now)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    size = timedelta(minutes=minutes)
    return midnight + ((now - midnight) // size) * size


def next_window_start(now: datetime, minutes: int) -> datetime:
    """Start of the window after the one containing now."""
    current = window_start(now, minutes)
    next_midnight = current.replace(hour=0, minute=0) + timedelta(days=1)
    return min(current + timedelta(minutes=minutes), next_midnight)


def generate_request_id(now: datetime) -> str:
    return f"req_{int(now.timestamp() * 1000)}_{secrets.token_hex(5)}"


class RateLimiter:
    """
    Counts immediately accepted manual refreshes per (window, source IP) and
    buffers the overflow, at most one pending request per IP.
    """

    def __init__(
        self,
        db: AsyncSession,
        max_per_window: int = settings.manual_refresh_max_per_hour,
        window_minutes: int = settings.rate_limit_window_minutes,
        buffer_first_request: bool = settings.buffer_immediate_first_request,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.max_per_window = max_per_window
        self.window_minutes = window_minutes
        self.buffer_first_request = buffer_first_request
        self.clock = clock

    def current_window(self) -> datetime:
        return window_start(self.clock(), self.window_minutes)

    async def get_request_count(self, source_ip: str) -> int:
        result = await self.db.execute(
            select(RateLimitWindow.request_count).where(
                RateLimitWindow.hour_window == self.current_window(),
                RateLimitWindow.source_ip == source_ip,
            )
        )
        return result.scalar_one_or_none() or 0

    async def check_rate_limit(self, source_ip: str) -> bool:
        """
        Whether source_ip may refresh immediately.

        The first request of a window is always allowed when
        buffer_first_request is set, even with a quota of zero.
        """
        count = await self.get_request_count(source_ip)
        allowed = count < self.max_per_window or (count == 0 and self.buffer_first_request)
        logger.debug(
            f"Rate limit check: ip={source_ip} count={count} "
            f"max={self.max_per_window} allowed={allowed}"
        )
        return allowed

    async def track_request(self, source_ip: str) -> None:
        """Count an accepted request against the current window."""
        now = self.clock()
        stmt = upsert_insert(self.db, RateLimitWindow).values(
            hour_window=window_start(now, self.window_minutes),
            source_ip=source_ip,
            request_count=1,
            last_request_time=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["hour_window", "source_ip"],
            set_={
                "request_count": RateLimitWindow.request_count + 1,
                "last_request_time": now,
            },
        )
        await self.db.execute(stmt)
        await self.db.commit()

    async def get_pending_request(self, source_ip: str) -> ManualRefreshRequest | None:
        result = await self.db.execute(
            select(ManualRefreshRequest)
            .where(
                ManualRefreshRequest.source_ip == source_ip,
                ManualRefreshRequest.executed.is_(False),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def buffer_request(
        self, source_ip: str, user_id: str | None = None
    ) -> ManualRefreshRequest | None:
        """
        Defer a refresh to the next window.

        Returns the new request, or None if source_ip already has one pending.
        The pending-per-IP unique index backs the check across workers.
        """
        if await self.get_pending_request(source_ip) is not None:
            logger.info(f"Refresh buffer full: ip={source_ip}")
            return None

        now = self.clock()
        request = ManualRefreshRequest(
            request_id=generate_request_id(now),
            source_ip=source_ip,
            user_id=user_id,
            request_time=now,
            scheduled_for=next_window_start(now, self.window_minutes),
            executed=False,
            notification_sent=False,
        )
        self.db.add(request)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Refresh buffer full: ip={source_ip} (concurrent request)")
            return None

        logger.info(
            f"Rate limit exceeded: ip={source_ip} request_id={request.request_id} "
            f"scheduled_for={request.scheduled_for.isoformat()}"
        )
        return request

    async def get_due_requests(self) -> list[ManualRefreshRequest]:
        """Pending requests whose scheduled_for has passed."""
        result = await self.db.execute(
            select(ManualRefreshRequest)
            .where(
                ManualRefreshRequest.executed.is_(False),
                ManualRefreshRequest.scheduled_for <= self.clock(),
            )
            .order_by(ManualRefreshRequest.scheduled_for)
        )
        return list(result.scalars().all())

    async def mark_executed(self, request_ids: list[int]) -> None:
        if not request_ids:
            return
        await self.db.execute(
            update(ManualRefreshRequest)
            .where(ManualRefreshRequest.id.in_(request_ids))
            .values(executed=True, notification_sent=True)
        )
        await self.db.commit()

    async def prune(self) -> tuple[int, int]:
        """
        Drop windows older than the current one and executed requests past retention.

        Returns:
            Tuple of (windows deleted, requests deleted)
        """
        windows = await self.db.execute(
            delete(RateLimitWindow)
            .where(RateLimitWindow.hour_window < self.current_window())
            .execution_options(synchronize_session=False)
        )
        requests = await self.db.execute(
            delete(ManualRefreshRequest).where(
                ManualRefreshRequest.executed.is_(True),
                ManualRefreshRequest.request_time < self.clock() - EXECUTED_REQUEST_RETENTION,
            ).execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return windows.rowcount, requests.rowcount
