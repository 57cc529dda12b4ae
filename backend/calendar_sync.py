"""
Timewise - Google Calendar Import
Copies the user's primary calendar into calendar_events so the scheduler can avoid it.
"""

from datetime import datetime, date, time, timedelta, timezone
from typing import Optional, List, Dict, Any
from uuid import UUID

import httpx
from dateutil.parser import isoparse

from config import get_google_config, GoogleCalendarConfig
from database import get_oauth_token, get_existing_event_ids, insert_calendar_events, mark_integration_synced
from integrations import SyncError, IntegrationNotConnected, IntegrationTokenExpired, http_client
from logger import get_logger
from models import SyncResult

logger = get_logger("calendar_sync")

PROVIDER = "google_calendar"


def _event_bound(value: Optional[Dict[str, Any]]) -> Optional[datetime]:
    """Google start/end object to an aware datetime; all-day dates become midnight UTC."""
    if not value:
        return None
    if value.get("dateTime"):
        parsed = isoparse(value["dateTime"])
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if value.get("date"):
        return datetime.combine(date.fromisoformat(value["date"]), time(0), tzinfo=timezone.utc)
    return None


def map_google_event(user_id: UUID, event: Dict[str, Any]) -> Optional[dict]:
    """calendar_events row for one Google event, or None when it has no usable start."""
    try:
        start = _event_bound(event.get("start"))
        end = _event_bound(event.get("end")) or start
    except ValueError as e:
        logger.warning(f"Skipping event {event.get('id')}: bad timestamp ({e})")
        return None
    if start is None or not event.get("id"):
        return None

    return {
        "user_id": user_id,
        "provider_event_id": event["id"],
        "title": event.get("summary") or "Untitled Event",
        "description": event.get("description"),
        "location": event.get("location"),
        "start_time": start,
        "end_time": max(end, start),
        "metadata": {
            "htmlLink": event.get("htmlLink"),
            "status": event.get("status"),
            "organizer": event.get("organizer"),
        },
    }


async def fetch_google_events(client: httpx.AsyncClient, access_token: str,
                              time_min: datetime, time_max: datetime,
                              config: GoogleCalendarConfig) -> List[Dict[str, Any]]:
    """All single (expanded) events in the window, following nextPageToken."""
    url = f"{config.api_base_url.rstrip('/')}/calendars/primary/events"
    params = {
        "timeMin": time_min.isoformat(),
        "timeMax": time_max.isoformat(),
        "singleEvents": "true",
        "orderBy": "startTime",
    }
    headers = {"Authorization": f"Bearer {access_token}"}

    items: List[Dict[str, Any]] = []
    while True:
        try:
            response = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise SyncError(f"Failed to reach Google Calendar: {e}") from e
        if response.status_code != 200:
            logger.error(f"Google Calendar API error {response.status_code}: {response.text[:300]}")
            raise SyncError(f"Failed to fetch calendar events ({response.status_code})")

        data = response.json()
        items.extend(data.get("items") or [])
        page_token = data.get("nextPageToken")
        if not page_token:
            return items
        params = dict(params, pageToken=page_token)


async def sync_google_calendar(user_id: UUID, client: Optional[httpx.AsyncClient] = None,
                               now: Optional[datetime] = None) -> SyncResult:
    """
    Import new events from the user's primary Google calendar.

    Raises:
        IntegrationNotConnected: No stored access token
        IntegrationTokenExpired: The stored token has expired
        SyncError: Google returned an error
    """
    config = get_google_config()
    now = now or datetime.now(timezone.utc)

    token = await get_oauth_token(user_id, PROVIDER)
    if not token or not token.get("access_token"):
        raise IntegrationNotConnected("Google Calendar not connected")
    expires_at = token.get("token_expires_at")
    if expires_at is not None and expires_at <= now:
        raise IntegrationTokenExpired("Google Calendar access has expired, please reconnect")

    time_min = now - timedelta(days=config.sync_past_days)
    time_max = now + timedelta(days=config.sync_future_days)
    logger.info(f"Fetching Google events for {user_id} from {time_min.isoformat()} to {time_max.isoformat()}")

    async with http_client(client, config.request_timeout_seconds) as http:
        events = await fetch_google_events(http, token["access_token"], time_min, time_max, config)

    seen = await get_existing_event_ids(user_id)
    rows = []
    for event in events:
        if event.get("id") in seen:
            continue
        row = map_google_event(user_id, event)
        if row is None:
            continue
        seen.add(row["provider_event_id"])
        rows.append(row)

    if rows:
        await insert_calendar_events(rows)
    await mark_integration_synced(user_id, PROVIDER, now)

    logger.info(f"Found {len(events)} Google events, synced {len(rows)} new for user {user_id}")
    return SyncResult(
        success=True,
        synced=len(rows),
        message=f"Successfully synced {len(rows)} new event(s)",
    )
