"""iCalendar export for a single event (RFC 5545)."""
from datetime import timezone

from icalendar import Calendar, Event as ICalEvent, vCalAddress, vText

from pulse.models.event import Event, EventStatus

PRODID = "-//Pulse Events//Event Export//EN"
ORGANIZER_EMAIL = "noreply@pulse.com"


def _utc(value):
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


def event_to_ical(event: Event) -> bytes:
    """Build a one-event VCALENDAR; cancelled events carry STATUS:CANCELLED."""
    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("method", "PUBLISH")

    item = ICalEvent()
    item.add("uid", f"{event.event_id}@pulse-events")
    item.add("summary", event.title)
    item.add("dtstart", _utc(event.start_at))
    item.add("dtend", _utc(event.end_at))
    item.add("dtstamp", _utc(event.updated_at or event.created_at or event.start_at))
    item.add("sequence", event.version)
    if event.description:
        item.add("description", event.description)
    if event.location_text:
        item.add("location", event.location_text)
    if event.tags:
        item.add("categories", list(event.tags))

    organizer = vCalAddress(f"MAILTO:{ORGANIZER_EMAIL}")
    organizer.params["cn"] = vText("Pulse Events")
    item["organizer"] = organizer

    item.add("status", "CANCELLED" if event.status == EventStatus.cancelled else "CONFIRMED")
    cal.add_component(item)
    return cal.to_ical()


def filename_for(event: Event) -> str:
    safe = "".join(c if c.isalnum() or c in " -_" else "_" for c in event.title).strip() or "event"
    return f"{safe}.ics"
