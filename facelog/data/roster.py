# facelog/data/roster.py
"""
Import people and weekly schedules from a JSON roster.

Format:
    {
      "persons": [
        {"id": 7, "code": "S-007", "display_name": "Ana Cruz",
         "department": "CS", "role": "STUDENT"}
      ],
      "schedules": [
        {"person_id": 7, "day": "Monday", "start": "08:00", "end": "12:00",
         "activity": "Lecture"}
      ]
    }

Schedules already present for a person are replaced by the roster's.
"""
import json
import logging

from .models import Person, Role, ScheduleEntry, parse_clock, parse_day

logger = logging.getLogger(__name__)


def _parse_role(value) -> Role:
    if not value:
        return Role.STUDENT
    text = str(value).strip()
    for role in Role:
        if text.upper() == role.name or text == role.value:
            return role
    raise ValueError(f"Unknown role: {value!r}")


def parse_roster(data: dict):
    """
    Validate a roster dict.

    Returns:
        (persons, schedules)

    Raises:
        ValueError: on any malformed record
    """
    persons = []
    for item in data.get("persons", []):
        try:
            persons.append(Person(
                id=int(item["id"]),
                code=str(item["code"]),
                display_name=str(item["display_name"]),
                department=str(item.get("department", "")),
                role=_parse_role(item.get("role")),
                active=bool(item.get("active", True))
            ))
        except KeyError as e:
            raise ValueError(f"Person record missing field {e}: {item}") from None

    schedules = []
    for item in data.get("schedules", []):
        try:
            entry = ScheduleEntry(
                person_id=int(item["person_id"]),
                day_of_week=parse_day(item["day"]),
                start_time=parse_clock(item["start"]),
                end_time=parse_clock(item["end"]),
                activity=str(item["activity"])
            )
        except KeyError as e:
            raise ValueError(f"Schedule record missing field {e}: {item}") from None
        if entry.end_time < entry.start_time:
            raise ValueError(f"Schedule ends before it starts: {item}")
        schedules.append(entry)

    return persons, schedules


def load_roster(store, path: str) -> dict:
    """
    Load a JSON roster into `store`.

    Returns:
        {'persons': n, 'schedules': n}
    """
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    persons, schedules = parse_roster(data)

    for person in persons:
        store.add_person(person)

    for person_id in {entry.person_id for entry in schedules}:
        for existing in store.find_schedule(person_id):
            store.remove_schedule(existing.id)
    for entry in schedules:
        store.add_schedule(entry)

    logger.info(f"[Roster] Imported {len(persons)} persons, {len(schedules)} schedule entries from {path}")
    return {'persons': len(persons), 'schedules': len(schedules)}
