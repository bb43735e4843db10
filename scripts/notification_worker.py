from __future__ import annotations

from arq import run_worker

from herald.core.logging import configure_logging
from herald.workers.notification_worker import WorkerSettings


def main() -> None:
    # Boot the arq worker that runs processing passes and reminder ticks.
    configure_logging()
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
