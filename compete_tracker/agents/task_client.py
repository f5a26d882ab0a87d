"""Client for the remote browsing agent's task API.

One task is submitted with ``POST {base}/v1/task/create`` and then polled
with ``GET {base}/v1/task/{id}`` until it reaches a terminal status.
Nothing is retried: a transport error, a non-2xx response or an unreadable
body ends the operation immediately.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar
from urllib.parse import quote, urlparse

import httpx
from loguru import logger
from pydantic import BaseModel

from ..errors import (
    AgentNotConfigured,
    AgentTimeoutError,
    BlockedOrUnavailable,
    NetworkError,
    ProviderError,
    TaskCancelled,
)
from ..utils.config import AgentConfig

T = TypeVar("T")

SUCCESS_STATES = frozenset({"completed", "finished", "success", "done"})
FAILURE_STATES = frozenset({"failed", "error"})

# Failure reasons that mean the target site stopped the agent
BLOCK_MARKERS = ("captcha", "recaptcha", "page.screenshot")

TASK_ID_PATHS = (("id",), ("taskId",), ("task", "id"), ("data", "id"))
STATUS_PATHS = (("status",), ("state",), ("task", "status"))
RESULT_FIELDS = ("result", "output", "response", "data", "result_json", "json")
REASON_FIELDS = ("failedReason", "error", "message")


class TaskStatus(str, Enum):
    SUBMITTED = "submitted"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskSpec(BaseModel):
    """What to ask the agent to do."""

    prompt: str
    # Key whose non-empty value in the create response counts as an inline result
    result_key: str = "steps"
    step_limit: Optional[int] = None


class AgentTask(BaseModel):
    """One outstanding remote job. Never persisted."""

    task_id: Optional[str] = None
    status: TaskStatus = TaskStatus.SUBMITTED
    result: Any = None
    polls: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class CancelToken:
    """Caller-side cancellation signal, observed between requests."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()


class DnsCache:
    """Per-host cache of resolved agent addresses, used for debug diagnostics.

    Concurrent lookups of the same host may both resolve; the last write wins
    and either value is correct.
    """

    def __init__(self):
        self._entries: Dict[str, Optional[List[str]]] = {}

    def __contains__(self, host: str) -> bool:
        return host in self._entries

    async def lookup(self, host: str) -> Optional[List[str]]:
        if host in self._entries:
            return self._entries[host]

        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(host, None)
            addresses = sorted({info[4][0] for info in infos})
        except OSError as e:
            logger.debug(f"DNS lookup failed for {host}: {e}")
            addresses = None

        self._entries[host] = addresses
        return addresses

    def clear(self):
        self._entries.clear()


def _dig(data: Any, path: tuple) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _first(data: dict, paths) -> Any:
    for path in paths:
        value = _dig(data, path)
        if value not in (None, ""):
            return value
    return None


def read_status(data: dict) -> str:
    """Lower-cased task status from any of the fields providers use."""
    return str(_first(data, STATUS_PATHS) or "").strip().lower()


def result_payload(data: dict) -> Any:
    """Result payload of a completed task (the whole body if no known field)."""
    for field in RESULT_FIELDS:
        value = data.get(field)
        if value not in (None, ""):
            return value
    return data


def failure_reason(data: dict) -> str:
    for field in REASON_FIELDS:
        value = data.get(field)
        if value:
            return str(value)
    return str(data)


def has_inline_result(data: dict, key: str) -> bool:
    value = data.get(key)
    return isinstance(value, (list, dict)) and len(value) > 0


class AgentTaskClient:
    """Submit one task to the browsing agent and poll it to completion.

    Args:
        config: Agent endpoint, credentials and polling settings
        http_client: Optional shared ``httpx.AsyncClient``; one is created
            per operation when omitted
        dns_cache: Optional cache for debug-mode DNS diagnostics
        sleep: Coroutine used between polls
        clock: Monotonic clock used for the polling bound
    """

    def __init__(
        self,
        config: AgentConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        dns_cache: Optional[DnsCache] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self._http_client = http_client
        self.dns_cache = dns_cache
        self._sleep = sleep
        self._clock = clock

    @property
    def base_url(self) -> str:
        return self.config.base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.config.base_url and self.config.api_key)

    def _ensure_configured(self):
        if not self.config.base_url:
            raise AgentNotConfigured("Agent URL not configured (set AGENT_API_URL)")
        if not self.config.api_key:
            raise AgentNotConfigured("Agent API key not configured (set AGENT_API_KEY)")

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @asynccontextmanager
    async def _session(self):
        if self._http_client is not None:
            yield self._http_client
            return

        async with httpx.AsyncClient(timeout=self.config.request_timeout) as client:
            yield client

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, what: str, **kwargs) -> dict:
        try:
            response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Agent {what} request failed: {e}")
            raise NetworkError(url, e) from e

        body = response.text

        if not response.is_success:
            logger.error(f"Agent {what} returned {response.status_code}: {body[:500]}")
            raise ProviderError(f"Agent {what} error", status_code=response.status_code, body=body)

        try:
            data = response.json()
        except ValueError:
            logger.error(f"Agent {what} returned invalid JSON: {body[:500]}")
            raise ProviderError(f"Agent returned invalid {what} JSON", status_code=response.status_code, body=body)

        if not isinstance(data, dict):
            raise ProviderError(f"Agent {what} response is not an object", status_code=response.status_code, body=body)

        logger.debug(f"Agent {what} response: {data}")
        return data

    def _check_cancelled(self, cancel: Optional[CancelToken], task: Optional[AgentTask] = None):
        if cancel is not None and cancel.cancelled:
            if task is not None:
                task.status = TaskStatus.CANCELLED
            logger.info("Agent task cancelled by caller")
            raise TaskCancelled("Client aborted")

    async def _diagnose_dns(self):
        if not (self.config.debug and self.dns_cache is not None):
            return
        host = urlparse(self.base_url).hostname
        if host and host not in self.dns_cache:
            addresses = await self.dns_cache.lookup(host)
            logger.debug(f"Agent host {host} resolves to {addresses}")

    async def submit(self, spec: TaskSpec, cancel: Optional[CancelToken] = None) -> AgentTask:
        """Create the remote task.

        Returns a ``submitted`` task to poll, or an already ``completed`` one
        when the provider answered inline.
        """
        async with self._session() as client:
            return await self._submit(client, spec, cancel)

    async def _submit(self, client: httpx.AsyncClient, spec: TaskSpec, cancel: Optional[CancelToken]) -> AgentTask:
        self._check_cancelled(cancel)
        self._ensure_configured()
        await self._diagnose_dns()

        url = f"{self.base_url}/v1/task/create"
        payload = {
            "agent": self.config.agent,
            "prompt": spec.prompt,
            "mode": self.config.mode,
            "stepLimit": spec.step_limit or self.config.step_limit,
        }

        logger.info(f"Submitting agent task to {url}")
        data = await self._request(client, "POST", url, "create-task", json=payload)

        if has_inline_result(data, spec.result_key):
            logger.info("Agent returned an immediate result; skipping polling")
            return AgentTask(status=TaskStatus.COMPLETED, result=data)

        task_id = _first(data, TASK_ID_PATHS)
        if task_id is None:
            logger.warning("Agent create-task returned no task id and no inline result")
            return AgentTask(status=TaskStatus.COMPLETED, result=data)

        return AgentTask(task_id=str(task_id), status=TaskStatus.SUBMITTED)

    async def poll(self, task: AgentTask, cancel: Optional[CancelToken] = None) -> AgentTask:
        """Poll ``task`` until it completes, fails, is cancelled or times out."""
        async with self._session() as client:
            return await self._poll(client, task, cancel)

    async def _poll(self, client: httpx.AsyncClient, task: AgentTask, cancel: Optional[CancelToken]) -> AgentTask:
        if task.is_terminal:
            return task

        self._ensure_configured()
        url = f"{self.base_url}/v1/task/{quote(str(task.task_id), safe='')}"
        started = self._clock()
        max_seconds = self.config.max_poll_seconds
        max_attempts = self.config.max_poll_attempts

        logger.info(f"Polling agent task {task.task_id}")

        while True:
            self._check_cancelled(cancel, task)

            elapsed = self._clock() - started
            if (max_attempts is not None and task.polls >= max_attempts) or (
                max_seconds is not None and elapsed >= max_seconds
            ):
                logger.error(f"Agent task {task.task_id} timed out after {task.polls} polls")
                raise AgentTimeoutError(str(task.task_id), elapsed, task.polls)

            task.polls += 1
            data = await self._request(client, "GET", url, "task status")
            status = read_status(data)

            if status in SUCCESS_STATES:
                task.status = TaskStatus.COMPLETED
                task.result = result_payload(data)
                logger.info(f"Agent task {task.task_id} completed after {task.polls} polls")
                return task

            if status in FAILURE_STATES:
                task.status = TaskStatus.FAILED
                reason = failure_reason(data)
                logger.error(f"Agent task {task.task_id} failed: {reason}")
                if any(marker in reason.lower() for marker in BLOCK_MARKERS):
                    raise BlockedOrUnavailable(reason)
                raise ProviderError(f"Agent task failed: {reason}", body=str(data))

            task.status = TaskStatus.RUNNING
            await self._sleep(self.config.poll_interval_seconds)

    async def run(
        self,
        spec: TaskSpec,
        normalize: Callable[[Any], T],
        cancel: Optional[CancelToken] = None,
    ) -> T:
        """Submit, poll if needed, and hand the result payload to ``normalize``."""
        async with self._session() as client:
            task = await self._submit(client, spec, cancel)
            task = await self._poll(client, task, cancel)
        return normalize(task.result)
