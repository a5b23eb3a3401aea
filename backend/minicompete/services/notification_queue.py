"""
At-least-once notification job queue on Redis.

LAYOUT (per queue name)
=======================

  queue:{name}:id          INCR counter for job ids
  queue:{name}:job:{id}    HASH  name, data, options, attempts_made, enqueued_at, last_error
  queue:{name}:waiting     LIST  ids ready to run (LPUSH in, RPOP out -> FIFO)
  queue:{name}:delayed     ZSET  ids waiting for a retry, scored by ready time (ms)
  queue:{name}:active      ZSET  ids leased by a worker, scored by lease deadline (ms)

Lifecycle:
  add()      -> waiting
  claim()    -> delayed jobs that are due move to waiting, then the oldest
                waiting job is leased into active (one Lua script, atomic)
  complete() -> removed (remove_on_complete) or kept in `completed`
  fail()     -> delayed with exponential backoff while attempts remain,
                otherwise removed; the caller dead-letters it
  reap_stalled() -> active jobs whose lease expired go back to waiting.
                A worker that crashed mid-job therefore never loses it, at the
                price of the job possibly running twice (at-least-once).

complete() and fail() check the lease in the same script that settles the job.
A worker whose lease already expired never reschedules or deletes a job that
the reaper handed back to the queue. A late complete() takes the requeued copy
back out of waiting; a late fail() leaves it there.

Payloads are validated against the tagged NotificationJob union on the way in
and on the way out.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Union

import redis.asyncio as redis
from pydantic import BaseModel, ValidationError

from minicompete.core.errors import InvalidJobPayload
from minicompete.core.logging import get_logger
from minicompete.core.metrics import notification_jobs_enqueued
from minicompete.infrastructure.redis_client import load_lua
from minicompete.schemas.notification import JobOptions, NotificationJob, notification_job_adapter

logger = get_logger(__name__)

CLAIM_SCRIPT = load_lua("claim_job")
REQUEUE_SCRIPT = load_lua("requeue_stalled")
COMPLETE_SCRIPT = load_lua("complete_job")
RETRY_SCRIPT = load_lua("retry_job")


@dataclass
class QueuedJob:
    id: str
    name: str
    data: dict[str, Any]
    options: JobOptions
    attempts_made: int = 0
    enqueued_at: int = 0
    last_error: Optional[str] = None

    def payload(self) -> NotificationJob:
        """The typed payload; raises InvalidJobPayload if it doesn't match the job name."""
        return parse_payload(self.name, self.data)


def parse_payload(name: str, data: Mapping[str, Any]) -> NotificationJob:
    try:
        payload = notification_job_adapter.validate_python(dict(data))
    except ValidationError as e:
        raise InvalidJobPayload(f"Invalid payload for job {name!r}: {e}") from e
    if payload.kind != name:
        raise InvalidJobPayload(f"Payload kind {payload.kind!r} does not match job name {name!r}")
    return payload


class NotificationQueue:
    def __init__(
        self,
        client: redis.Redis,
        name: str = "email",
        *,
        default_options: Optional[JobOptions] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.redis = client
        self.name = name
        self.default_options = default_options or JobOptions()
        self._clock = clock
        self._claim = client.register_script(CLAIM_SCRIPT)
        self._requeue = client.register_script(REQUEUE_SCRIPT)
        self._complete = client.register_script(COMPLETE_SCRIPT)
        self._retry = client.register_script(RETRY_SCRIPT)

    def _key(self, suffix: str) -> str:
        return f"queue:{self.name}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def add(
        self,
        name: str,
        data: Union[BaseModel, Mapping[str, Any]],
        options: Optional[JobOptions] = None,
    ) -> str:
        """Validate and enqueue a job. Returns the job id."""
        raw = data.model_dump(mode="json") if isinstance(data, BaseModel) else dict(data)
        payload = parse_payload(name, raw)
        options = options or self.default_options

        job_id = str(await self.redis.incr(self._key("id")))
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                self._job_key(job_id),
                mapping={
                    "name": name,
                    "data": payload.model_dump_json(),
                    "options": options.model_dump_json(),
                    "attempts_made": 0,
                    "enqueued_at": self._now_ms(),
                },
            )
            pipe.lpush(self._key("waiting"), job_id)
            await pipe.execute()

        notification_jobs_enqueued.labels(job_name=name).inc()
        logger.info("job_enqueued", queue=self.name, job_id=job_id, job_name=name)
        return job_id

    async def claim(self, lease_seconds: float) -> Optional[QueuedJob]:
        """Lease the next ready job, or return None if there is none."""
        now = self._now_ms()
        job_id = await self._claim(
            keys=[self._key("waiting"), self._key("delayed"), self._key("active")],
            args=[now, now + int(lease_seconds * 1000)],
        )
        if not job_id:
            return None

        fields = await self.redis.hgetall(self._job_key(job_id))
        if not fields:
            # Hash vanished (manual cleanup); drop the dangling lease
            await self.redis.zrem(self._key("active"), job_id)
            logger.warning("job_missing", queue=self.name, job_id=job_id)
            return None

        return QueuedJob(
            id=job_id,
            name=fields["name"],
            data=json.loads(fields["data"]),
            options=JobOptions.model_validate_json(fields["options"]),
            attempts_made=int(fields.get("attempts_made", 0)),
            enqueued_at=int(fields.get("enqueued_at", 0)),
            last_error=fields.get("last_error"),
        )

    async def complete(self, job: QueuedJob) -> None:
        settled = await self._complete(
            keys=[self._key("active"), self._key("waiting"), self._job_key(job.id), self._key("completed")],
            args=[job.id, int(job.options.remove_on_complete)],
        )
        if settled != 1:
            # 2: requeued by the reaper and taken back out; 0: another worker has it
            logger.warning("job_lease_lost", queue=self.name, job_id=job.id, requeued_copy_removed=settled == 2)

    async def fail(self, job: QueuedJob, error: BaseException, *, retry: bool = True) -> bool:
        """
        Record a failed attempt.

        Returns True if the job stays in the queue: scheduled for another
        attempt, or already requeued because its lease expired. Returns False
        if it is exhausted (or not retryable) and has been removed; the caller
        dead-letters it. `job.attempts_made` is updated in place.
        """
        job.attempts_made += 1
        job.last_error = str(error)

        retrying = retry and job.attempts_made < job.options.attempts
        delay_ms = job.options.backoff.delay_for(job.attempts_made) if retrying else 0
        held = await self._retry(
            keys=[self._key("active"), self._key("delayed"), self._job_key(job.id)],
            args=[job.id, int(retrying), self._now_ms() + delay_ms, job.attempts_made, job.last_error],
        )

        if not held:
            logger.warning("job_lease_lost", queue=self.name, job_id=job.id, attempts_made=job.attempts_made)
            return True

        if retrying:
            logger.info(
                "job_retry_scheduled",
                queue=self.name,
                job_id=job.id,
                attempts_made=job.attempts_made,
                delay_ms=delay_ms,
            )
        return retrying

    async def reap_stalled(self, limit: int = 100) -> int:
        """Return expired leases to the head of the waiting list."""
        requeued = await self._requeue(
            keys=[self._key("active"), self._key("waiting")],
            args=[self._now_ms(), limit],
        )
        if requeued:
            logger.warning("stalled_jobs_requeued", queue=self.name, count=requeued)
        return int(requeued)

    async def counts(self) -> dict[str, int]:
        async with self.redis.pipeline(transaction=False) as pipe:
            pipe.llen(self._key("waiting"))
            pipe.zcard(self._key("delayed"))
            pipe.zcard(self._key("active"))
            waiting, delayed, active = await pipe.execute()
        return {"waiting": waiting, "delayed": delayed, "active": active}
