"""
Job Queue — Postgres-backed message queue with visibility timeouts.

Named queues share the healing_queue table. A read leases messages by pushing
their visible_at into the future; a message that is not acked before the
lease expires becomes visible again (at-least-once delivery).

Dead letters go to the same table under "<queue>_dlq".
"""

import json
from typing import Optional

from sqlalchemy import text

from autoheal import settings
from autoheal.logger import log
from db.session import engine

DLQ_SUFFIX = "_dlq"


def dead_letter_queue_name(queue_name: str) -> str:
    return f"{queue_name}{DLQ_SUFFIX}"


def enqueue_job(
    queue_name: str,
    payload: dict,
    delay_seconds: int = 0,
    max_retries: Optional[int] = None,
) -> int:
    """Insert a message into a queue. Returns the message id."""
    if max_retries is None:
        max_retries = settings.QUEUE_MAX_RETRIES
    try:
        with engine.begin() as conn:
            result = conn.execute(text(
                "INSERT INTO healing_queue (queue_name, payload, max_retries, visible_at) "
                "VALUES (:q, :payload, :mr, now() + make_interval(secs => :delay)) "
                "RETURNING id"
            ), {
                "q": queue_name,
                "payload": json.dumps(payload, default=str),
                "mr": max_retries,
                "delay": delay_seconds,
            })
            job_id = result.fetchone()[0]
    except Exception as e:
        raise RuntimeError(f"Enqueue failed: {e}")
    log("queue.enqueued", queue=queue_name, job_id=job_id, delay_seconds=delay_seconds)
    return job_id


def read_jobs(queue_name: str, visibility_timeout: int, batch_size: int) -> list:
    """Lease up to batch_size visible messages for visibility_timeout seconds.

    Concurrent readers never receive the same message (SKIP LOCKED).
    """
    try:
        with engine.begin() as conn:
            rows = conn.execute(text(
                "UPDATE healing_queue "
                "SET visible_at = now() + make_interval(secs => :vt), "
                "    read_count = read_count + 1 "
                "WHERE id IN ("
                "    SELECT id FROM healing_queue "
                "    WHERE queue_name = :q AND visible_at <= now() "
                "    ORDER BY id LIMIT :n FOR UPDATE SKIP LOCKED"
                ") "
                "RETURNING id, queue_name, payload, read_count, retry_count, "
                "          max_retries, enqueued_at"
            ), {"q": queue_name, "vt": visibility_timeout, "n": batch_size}).fetchall()
    except Exception as e:
        log("queue.read_failed", level="error", queue=queue_name, error=str(e))
        return []

    return [
        {
            "id": r.id,
            "queue_name": r.queue_name,
            "payload": r.payload if isinstance(r.payload, dict) else json.loads(r.payload or "{}"),
            "read_count": r.read_count,
            "retry_count": r.retry_count,
            "max_retries": r.max_retries,
            "enqueued_at": r.enqueued_at.isoformat() if r.enqueued_at else None,
        }
        for r in sorted(rows, key=lambda r: r.id)
    ]


def ack_job(job_id: int) -> bool:
    """Delete a processed message. Returns True if it was still present."""
    try:
        with engine.begin() as conn:
            result = conn.execute(text(
                "DELETE FROM healing_queue WHERE id = :jid"
            ), {"jid": job_id})
            return result.rowcount > 0
    except Exception as e:
        log("queue.ack_failed", level="error", job_id=job_id, error=str(e))
        return False


def retry_job(job_id: int, error: str, delay_seconds: int) -> bool:
    """Bump retry_count and hide the message for delay_seconds."""
    try:
        with engine.begin() as conn:
            result = conn.execute(text(
                "UPDATE healing_queue "
                "SET retry_count = retry_count + 1, last_error = :err, "
                "    visible_at = now() + make_interval(secs => :delay) "
                "WHERE id = :jid"
            ), {"jid": job_id, "err": error, "delay": delay_seconds})
            return result.rowcount > 0
    except Exception as e:
        log("queue.retry_failed", level="error", job_id=job_id, error=str(e))
        return False


def move_to_dead_letter(job: dict, error: str) -> bool:
    """Copy a message into its dead-letter queue and delete the original."""
    dlq = dead_letter_queue_name(job["queue_name"])
    envelope = {
        "original_id": job["id"],
        "original_queue": job["queue_name"],
        "payload": job.get("payload") or {},
        "error": error,
        "retry_count": job.get("retry_count", 0),
    }
    try:
        with engine.begin() as conn:
            conn.execute(text(
                "INSERT INTO healing_queue (queue_name, payload, max_retries, last_error) "
                "VALUES (:q, :payload, 0, :err)"
            ), {"q": dlq, "payload": json.dumps(envelope, default=str), "err": error})
            conn.execute(text(
                "DELETE FROM healing_queue WHERE id = :jid"
            ), {"jid": job["id"]})
    except Exception as e:
        log("queue.dead_letter_failed", level="error", job_id=job["id"], error=str(e))
        return False
    log("queue.dead_lettered", level="warning", queue=job["queue_name"],
        job_id=job["id"], error=error)
    return True


def get_queue_stats(queue_name: str) -> dict:
    """Depth, visible/in-flight split, oldest message age and dead-letter depth."""
    stats = {
        "queue_name": queue_name,
        "depth": 0,
        "visible": 0,
        "in_flight": 0,
        "oldest_age_seconds": None,
        "dead_letter_depth": 0,
    }
    try:
        with engine.connect() as conn:
            row = conn.execute(text(
                "SELECT COUNT(*) AS depth, "
                "       COUNT(*) FILTER (WHERE visible_at <= now()) AS visible, "
                "       EXTRACT(EPOCH FROM now() - MIN(enqueued_at)) AS oldest "
                "FROM healing_queue WHERE queue_name = :q"
            ), {"q": queue_name}).fetchone()
            dlq_row = conn.execute(text(
                "SELECT COUNT(*) AS depth FROM healing_queue WHERE queue_name = :q"
            ), {"q": dead_letter_queue_name(queue_name)}).fetchone()
    except Exception as e:
        log("queue.stats_failed", level="error", queue=queue_name, error=str(e))
        return stats

    stats["depth"] = row.depth or 0
    stats["visible"] = row.visible or 0
    stats["in_flight"] = stats["depth"] - stats["visible"]
    stats["oldest_age_seconds"] = float(row.oldest) if row.oldest is not None else None
    stats["dead_letter_depth"] = dlq_row.depth or 0
    return stats


def purge_queue(queue_name: str) -> int:
    """Delete every message in a queue. Returns count deleted."""
    try:
        with engine.begin() as conn:
            result = conn.execute(text(
                "DELETE FROM healing_queue WHERE queue_name = :q"
            ), {"q": queue_name})
            return result.rowcount
    except Exception as e:
        log("queue.purge_failed", level="error", queue=queue_name, error=str(e))
        return 0
