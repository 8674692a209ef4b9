import asyncio


class TaskTracker:
    """Background tasks owned by one application instance.

    Lives on ``app.state`` rather than in module globals, so each app (and
    each test client) drains only its own work on shutdown.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._shutdown = asyncio.Event()

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    def track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        self._shutdown.set()
        tasks = list(self._tasks)
        if not tasks:
            return
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
