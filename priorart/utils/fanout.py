# priorart/utils/fanout.py

import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, TypeVar
from loguru import logger

T = TypeVar("T")


async def gather_settled(aws: Iterable[Awaitable[T]], label: str = "batch") -> List[T]:
    """
    尽力而为的并发：单个失败只记录日志并从结果中剔除，不影响整批。
    返回成功结果，保持输入顺序。
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    collected = []
    for res in results:
        if isinstance(res, BaseException):
            if isinstance(res, asyncio.CancelledError):
                raise res
            logger.warning(f"[FanOut] {label}: dropped failed call: {res}")
            continue
        collected.append(res)
    return collected


async def gather_with_fallback(
    items: Iterable[Any],
    call: Callable[[Any], Awaitable[T]],
    fallback: Callable[[Any], T],
    label: str = "batch",
) -> List[T]:
    """
    必达型并发：每个输入都产出一个结果，失败的调用以 fallback(item) 占位。
    """
    items = list(items)

    async def _guarded(item):
        try:
            return await call(item)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[FanOut] {label}: {item} failed, using fallback: {e}")
            return fallback(item)

    return list(await asyncio.gather(*(_guarded(item) for item in items)))
