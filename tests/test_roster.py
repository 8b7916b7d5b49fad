import json
import os
from datetime import time

import pytest

from facelog.data.models import Role
from facelog.data.roster import load_roster, parse_roster

EXAMPLE_ROSTER = os.path.join(os.path.dirname(__file__), "..", "config", "roster.example.json")


def test_parse_roster():
    persons, schedules = parse_roster({
        "persons": [{"id": "3", "code": "T-3", "display_name": "Cy", "role": "Staff Member"}],
        "schedules": [{"person_id": 3, "day": "fri", "start": "13:00", "end": "15:30",
                       "activity": "Lab"}],
    })
    assert persons[0].id == 3
    assert persons[0].role is Role.STAFF
    assert schedules[0].day_of_week == 4
    assert schedules[0].end_time == time(15, 30)


@pytest.mark.parametrize("data", [
    {"persons": [{"id": 1, "display_name": "No Code"}]},
    {"persons": [{"id": 1, "code": "X", "display_name": "Y", "role": "JANITOR"}]},
    {"schedules": [{"person_id": 1, "day": "Mon", "start": "12:00", "end": "08:00",
                    "activity": "Backwards"}]},
    {"schedules": [{"person_id": 1, "day": "Mon", "start": "08:00"}]},
])
def test_parse_roster_rejects_bad_records(data):
    with pytest.raises(ValueError):
        parse_roster(data)


def test_load_example_roster(store):
    counts = load_roster(store, EXAMPLE_ROSTER)

    assert counts == {"persons": 2, "schedules": 3}
    assert store.find_person(2).role is Role.STAFF
    assert [e.activity for e in store.find_schedule(1)] == ["Lecture", "Lab"]


def test_reloading_replaces_schedules(store, tmp_path):
    load_roster(store, EXAMPLE_ROSTER)

    path = tmp_path / "roster.json"
    path.write_text(json.dumps({
        "schedules": [{"person_id": 1, "day": "Friday", "start": "09:00", "end": "10:00",
                       "activity": "Tutorial"}],
    }))
    load_roster(store, str(path))

    assert [e.activity for e in store.find_schedule(1)] == ["Tutorial"]
    assert [e.activity for e in store.find_schedule(2)] == ["Office Hours"]
