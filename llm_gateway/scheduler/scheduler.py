"""
维护任务调度器
按固定间隔运行预算检查、月度聚合与数据清理等后台任务
"""

import asyncio
import inspect
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from llm_gateway.utils.logger import get_logger

logger = get_logger(__name__)

# 任务表中每个条目的统计字段
COUNTER_FIELDS = ("run_count", "success_count", "error_count")


class TaskScheduler:
    """基于任务表的间隔调度器，时钟可注入以便测试"""

    def __init__(self, poll_interval: float = 1.0, clock: Callable[[], datetime] = datetime.now):
        self.tasks: dict[str, dict[str, Any]] = {}
        self.running = False
        self.poll_interval = poll_interval
        self.clock = clock
        self._loop_task: Optional[asyncio.Task] = None

    def add_task(
        self,
        name: str,
        func: Callable,
        interval_seconds: int,
        run_immediately: bool = False,
        **kwargs: Any,
    ) -> None:
        """
        注册（或替换）一个维护任务

        Args:
            name: 任务名，同名任务会被覆盖
            func: 同步函数或协程函数
            interval_seconds: 两次运行之间的秒数
            run_immediately: 为真时在下一次轮询就运行
            **kwargs: 每次调用时传入的关键字参数
        """
        first_run = self.clock()
        if not run_immediately:
            first_run += timedelta(seconds=interval_seconds)

        entry: dict[str, Any] = {
            "func": func,
            "kwargs": kwargs,
            "interval": interval_seconds,
            "enabled": True,
            "last_run": None,
            "next_run": first_run,
            "last_error": None,
            "last_duration": None,
        }
        entry.update(dict.fromkeys(COUNTER_FIELDS, 0))
        self.tasks[name] = entry

        logger.info(f"注册维护任务 {name}: 每 {interval_seconds}s 运行一次")

    def remove_task(self, name: str) -> None:
        if self.tasks.pop(name, None) is not None:
            logger.info(f"移除维护任务 {name}")

    def enable_task(self, name: str) -> None:
        self._set_enabled(name, True)

    def disable_task(self, name: str) -> None:
        self._set_enabled(name, False)

    def _set_enabled(self, name: str, enabled: bool) -> None:
        entry = self.tasks.get(name)
        if entry is not None:
            entry["enabled"] = enabled

    async def run_task(self, name: str) -> Any:
        """手动触发一次任务，之后按间隔重新排期"""
        return await self._run_task(name, self.tasks[name])

    async def _run_task(self, name: str, entry: dict[str, Any]) -> Any:
        """运行任务并记录结果，异常在记录后继续抛出"""
        started = time.perf_counter()

        try:
            result = entry["func"](**entry["kwargs"])
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self._finish(entry, time.perf_counter() - started, error=str(e))
            logger.error(f"维护任务 {name} 失败: {e}")
            raise

        elapsed = self._finish(entry, time.perf_counter() - started)
        logger.debug(f"维护任务 {name} 完成 ({elapsed:.2f}s)")
        return result

    def _finish(self, entry: dict[str, Any], elapsed: float, error: Optional[str] = None) -> float:
        finished_at = self.clock()
        entry.update(
            last_run=finished_at,
            next_run=finished_at + timedelta(seconds=entry["interval"]),
            last_duration=elapsed,
            last_error=error,
        )
        entry["run_count"] += 1
        entry["error_count" if error else "success_count"] += 1
        return elapsed

    def due_tasks(self) -> list[str]:
        """已启用且到期的任务名"""
        now = self.clock()
        return [name for name, entry in self.tasks.items() if entry["enabled"] and entry["next_run"] <= now]

    async def run_pending(self) -> None:
        """并发运行全部到期任务，互不影响"""
        due = self.due_tasks()
        if due:
            await asyncio.gather(*(self._run_task(name, self.tasks[name]) for name in due), return_exceptions=True)

    async def _poll(self) -> None:
        logger.info("维护任务调度器启动")

        while self.running:
            try:
                await self.run_pending()
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"调度轮询异常: {e}")
                await asyncio.sleep(5)

    async def start(self) -> None:
        if self.running:
            logger.warning("维护任务调度器已在运行")
            return

        self.running = True
        self._loop_task = asyncio.create_task(self._poll())

    async def stop(self) -> None:
        if not self.running:
            return

        self.running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        logger.info("维护任务调度器已停止")

    @staticmethod
    def _describe(entry: dict[str, Any]) -> dict[str, Any]:
        last_run, next_run = entry["last_run"], entry["next_run"]
        description = {
            "enabled": entry["enabled"],
            "interval": entry["interval"],
            "last_run": last_run.isoformat() if last_run else None,
            "next_run": next_run.isoformat() if next_run else None,
            "success_rate": entry["success_count"] / max(entry["run_count"], 1),
            "last_error": entry["last_error"],
            "last_duration": entry["last_duration"],
        }
        description.update({field: entry[field] for field in COUNTER_FIELDS})
        return description

    def get_task_status(self) -> dict[str, Any]:
        """调度器与各任务的运行统计"""
        return {
            "scheduler_running": self.running,
            "total_tasks": len(self.tasks),
            "enabled_tasks": sum(1 for entry in self.tasks.values() if entry["enabled"]),
            "tasks": {name: self._describe(entry) for name, entry in self.tasks.items()},
        }
