"""Run ARQ worker. Usage: python -m zazzles.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from zazzles.worker.tasks import get_redis_settings, run_auto_topup, shutdown, startup, sweep_auto_topups


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [run_auto_topup]
    cron_jobs = [
        cron(sweep_auto_topups, minute=set(range(0, 60, 5)), second=0, unique=True),  # every 5 minutes
    ]
    on_startup = startup
    on_shutdown = shutdown


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
