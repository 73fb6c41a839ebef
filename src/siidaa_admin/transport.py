# src/siidaa_admin/transport.py

import time
import typing
from contextlib import asynccontextmanager

import httpx


@asynccontextmanager
async def open_client(shared: typing.Optional[httpx.AsyncClient], timeout: float):
    """Yields the shared client when one was injected, otherwise a short-lived one."""
    if shared is not None:
        yield shared
        return
    async with httpx.AsyncClient(timeout=timeout) as client:
        yield client


def elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)
