"""
Timewise - Canvas LMS Import
Turns upcoming Canvas assignments into pending homework tasks.
"""

import ipaddress
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Iterable
from urllib.parse import urlparse
from uuid import UUID

import httpx
from dateutil.parser import isoparse

from config import get_canvas_config, CanvasConfig
from database import get_profile, get_canvas_task_titles, create_tasks, mark_integration_synced
from integrations import SyncError, IntegrationNotConnected, http_client, next_link
from logger import get_logger
from models import Priority, TaskStatus, SyncResult
from scheduler import resolve_timezone

logger = get_logger("canvas_sync")

CANVAS_TAGS = ["canvas", "homework"]


# ============================================
# URL VALIDATION
# ============================================

def validate_canvas_url(url: Optional[str], allowed_domains: Iterable[str]) -> str:
    """
    Check a user-supplied Canvas base URL before any request is made to it.

    Returns:
        The URL without surrounding whitespace or a trailing slash

    Raises:
        SyncError: The URL is malformed, not https, private, or not a Canvas domain
    """
    if not url or not url.strip():
        raise SyncError("Canvas URL not configured")
    url = url.strip()

    parsed = urlparse(url)
    if not parsed.scheme or not parsed.hostname:
        raise SyncError("Invalid Canvas URL format")
    if parsed.scheme.lower() != "https":
        raise SyncError("Canvas URL must use HTTPS protocol")

    hostname = parsed.hostname.lower()
    if hostname == "localhost" or hostname.endswith(".localhost"):
        raise SyncError("Canvas URL cannot be a private IP address")
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        address = None
    if address is not None and (address.is_private or address.is_loopback or address.is_link_local):
        raise SyncError("Canvas URL cannot be a private IP address")

    domains = [d.lower().lstrip(".") for d in allowed_domains]
    if not any(hostname == d or hostname.endswith(f".{d}") for d in domains):
        raise SyncError("Canvas URL must be from an authorized Canvas domain (*.instructure.com)")

    return url.rstrip("/")


# ============================================
# CANVAS API
# ============================================

async def _get_all_pages(client: httpx.AsyncClient, url: str, params: Dict[str, Any],
                         headers: Dict[str, str]) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    next_url: Optional[str] = url
    while next_url:
        response = await client.get(next_url, params=params, headers=headers)
        if response.status_code != 200:
            raise SyncError(f"Canvas API error: {response.status_code}")
        items.extend(response.json() or [])
        next_url = next_link(response)
        # the next link already carries the query string
        params = None
    return items


def assignment_to_task(user_id: UUID, course: Dict[str, Any], assignment: Dict[str, Any],
                       due: datetime, tzinfo, config: CanvasConfig) -> dict:
    return {
        "user_id": user_id,
        "title": f"{course.get('name') or 'Course'}: {assignment.get('name') or 'Assignment'}",
        "description": assignment.get("description") or "",
        "duration_minutes": config.default_duration_minutes,
        "priority": Priority.MEDIUM.value,
        "tags": list(CANVAS_TAGS),
        "status": TaskStatus.PENDING.value,
        "scheduled_date": due.astimezone(tzinfo).date(),
        "scheduled_time": None,
        "commute_minutes": 0,
        "recurrence_pattern": "once",
        "recurrence_days": [],
        "recurrence_end_date": None,
        "recurrence_group_id": None,
        "color": config.task_color,
    }


async def fetch_upcoming_assignments(client: httpx.AsyncClient, base_url: str, token: str,
                                     user_id: UUID, now: datetime, tzinfo,
                                     config: CanvasConfig) -> List[dict]:
    """Task rows for every future-dated assignment in the user's active courses."""
    headers = {"Authorization": f"Bearer {token}"}
    try:
        courses = await _get_all_pages(
            client, f"{base_url}/api/v1/courses", {"enrollment_state": "active"}, headers
        )
    except httpx.HTTPError as e:
        raise SyncError(f"Failed to reach Canvas: {e}") from e

    rows = []
    for course in courses:
        course_id = course.get("id")
        try:
            assignments = await _get_all_pages(
                client, f"{base_url}/api/v1/courses/{course_id}/assignments",
                {"order_by": "due_at"}, headers,
            )
        except (SyncError, httpx.HTTPError) as e:
            logger.warning(f"Skipping assignments for course {course_id}: {e}")
            continue

        for assignment in assignments:
            if not assignment.get("due_at"):
                continue
            try:
                due = isoparse(assignment["due_at"])
            except ValueError:
                logger.warning(f"Bad due_at on assignment {assignment.get('id')}: {assignment['due_at']}")
                continue
            if due.tzinfo is None:
                due = due.replace(tzinfo=timezone.utc)
            if due <= now:
                continue
            rows.append(assignment_to_task(user_id, course, assignment, due, tzinfo, config))

    logger.info(f"Canvas returned {len(courses)} active course(s), {len(rows)} upcoming assignment(s)")
    return rows


# ============================================
# SYNC
# ============================================

async def sync_canvas(user_id: UUID, client: Optional[httpx.AsyncClient] = None,
                      now: Optional[datetime] = None) -> SyncResult:
    """
    Import upcoming Canvas assignments as tasks, skipping titles already imported.

    Raises:
        IntegrationNotConnected: No Canvas URL on the profile or no API token configured
        SyncError: Invalid URL or the course list could not be fetched
    """
    config = get_canvas_config()
    now = now or datetime.now(timezone.utc)

    profile = await get_profile(user_id)
    if not profile or not profile.get("canvas_url"):
        raise IntegrationNotConnected("Canvas URL not configured")
    base_url = validate_canvas_url(profile["canvas_url"], config.allowed_domains)
    if not config.api_token:
        raise IntegrationNotConnected("Canvas API token not configured")

    tzinfo = resolve_timezone(profile.get("timezone"))
    async with http_client(client, config.request_timeout_seconds) as http:
        rows = await fetch_upcoming_assignments(http, base_url, config.api_token, user_id, now, tzinfo, config)

    existing = await get_canvas_task_titles(user_id)
    new_rows = []
    for row in rows:
        if row["title"] in existing:
            continue
        existing.add(row["title"])
        new_rows.append(row)

    if new_rows:
        await create_tasks(new_rows)
    await mark_integration_synced(user_id, "canvas", now)

    logger.info(f"Synced {len(new_rows)} new assignments from Canvas for user {user_id}")
    return SyncResult(
        success=True,
        synced=len(new_rows),
        message=f"Successfully synced {len(new_rows)} new assignment(s)",
    )
