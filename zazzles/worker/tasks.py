"""ARQ job definitions."""

import uuid
from typing import Any

from arq.connections import RedisSettings
from beanie import PydanticObjectId

from zazzles.core.config import get_settings
from zazzles.core.logging import get_logger
from zazzles.db.credit_store import CreditStore
from zazzles.models.failed_job import FailedJob
from zazzles.services.auto_topup import AutoTopUpService
from zazzles.services.payment_gateway import StripeGateway

log = get_logger(__name__)


async def _run_with_dlq(
    job_name: str,
    job_id: str | None,
    args: list[Any],
    kwargs: dict[str, Any],
    coro,
) -> Any:
    """Run coroutine; on exception persist to FailedJob then re-raise."""
    try:
        return await coro
    except Exception as e:
        fid = job_id or str(uuid.uuid4())
        await FailedJob(
            job_name=job_name,
            job_id=fid,
            args=args,
            kwargs=kwargs,
            reason=str(e)[:2000],
            retries=0,
        ).insert()
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        raise


def _job_id(ctx: dict[str, Any]) -> str | None:
    return ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None


async def sweep_auto_topups(ctx: dict[str, Any]) -> dict[str, int]:
    """Cron job: run the auto top-up check for every business that has it enabled."""
    service: AutoTopUpService = ctx["auto_topup"]
    return await _run_with_dlq("sweep_auto_topups", _job_id(ctx), [], {}, service.sweep())


async def run_auto_topup(ctx: dict[str, Any], business_id: str) -> int:
    """Single-business check; returns credits added."""
    service: AutoTopUpService = ctx["auto_topup"]

    async def _run() -> int:
        log.info("job_start", job="run_auto_topup", business_id=business_id)
        result = await service.run(PydanticObjectId(business_id))
        log.info("job_done", job="run_auto_topup", business_id=business_id, ok=result.ok, error=result.detail)
        return result.value or 0

    return await _run_with_dlq("run_auto_topup", _job_id(ctx), [business_id], {}, _run())


async def startup(ctx: dict) -> None:
    from zazzles.core.logging import configure_logging, init_sentry
    from zazzles.db.init import init_db

    settings = get_settings()
    configure_logging(debug=settings.debug)
    init_sentry(settings, "worker")
    ctx["mongo"] = await init_db()
    ctx["auto_topup"] = AutoTopUpService(CreditStore(), StripeGateway.from_settings(settings))


async def shutdown(ctx: dict) -> None:
    client = ctx.get("mongo")
    if client is not None:
        client.close()


def get_redis_settings() -> RedisSettings:
    from urllib.parse import urlparse
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )
