import csv
import io
import sqlite3

import pytest

from facelog.core.camera import SourceStatus
from facelog.data.models import AttendanceEvent, EventType
from facelog.processing.attendance import AttendanceOutcome, OutcomeStatus
from facelog.recognition.engine import RecognitionResult
from facelog.web.server import create_app

from conftest import at


class StubSource:
    status = SourceStatus.RUNNING
    fps = 29.97
    last_error = None

    def is_running(self):
        return True

    def is_paused(self):
        return False


class StubPipeline:
    def __init__(self, result=None, outcome=None):
        self.last_result = result
        self.last_outcome = outcome


@pytest.fixture
def seeded_store(lecture_store):
    lecture_store.append(AttendanceEvent(1, at(9, 0), EventType.TIME_IN, "Lecture", 31.234, "CAM1"))
    lecture_store.append(AttendanceEvent(1, at(9, 30), EventType.TIME_OUT, "Lecture", 29.0, "CAM1"))
    return lecture_store


@pytest.fixture
def client(seeded_store, ana):
    pipeline = StubPipeline(
        RecognitionResult.recognized(ana, 31.234),
        AttendanceOutcome(OutcomeStatus.LOGGED, "Time In recorded for Lecture", 1, at(9, 0), "Lecture")
    )
    app = create_app(seeded_store, StubSource(), pipeline)
    app.config["TESTING"] = True
    return app.test_client()


def test_status(client):
    data = client.get("/api/status").get_json()
    assert data["camera"] == {
        "status": "Running", "fps": 30.0, "running": True, "paused": False, "last_error": None,
    }
    assert data["last_result"]["status"] == "recognized"
    assert data["last_result"]["name"] == "Ana Cruz"
    assert data["last_result"]["confidence"] == 31.23
    assert data["last_outcome"]["decided_at"] == "2024-01-01 09:00:00"


def test_status_without_camera(seeded_store):
    client = create_app(seeded_store).test_client()
    data = client.get("/api/status").get_json()
    assert data["camera"] is None
    assert data["last_result"] is None


def test_attendance_for_day(client):
    events = client.get("/api/attendance?date=2024-01-01").get_json()
    assert [e["event_type"] for e in events] == ["Time Out", "Time In"]
    assert events[1]["name"] == "Ana Cruz"
    assert events[1]["time"] == "09:00:00"
    assert events[1]["confidence"] == 31.23


def test_attendance_today_is_empty(client):
    assert client.get("/api/attendance/today").get_json() == []


def test_bad_date_is_400(client):
    response = client.get("/api/attendance?date=01/01/2024")
    assert response.status_code == 400
    assert "YYYY-MM-DD" in response.get_json()["error"]


def test_summary(client):
    response = client.get("/api/summary/1?start=2024-01-01&end=2024-01-31")
    assert response.status_code == 200
    assert response.get_json() == {
        "person_id": 1,
        "name": "Ana Cruz",
        "start": "2024-01-01",
        "end": "2024-01-31",
        "total_days": 1,
        "time_in_count": 1,
        "time_out_count": 1,
    }


def test_summary_unknown_person_is_404(client):
    assert client.get("/api/summary/42").status_code == 404


def test_export_csv(client):
    response = client.get("/api/export.csv?start=2024-01-01&end=2024-01-01&activity=Lecture")
    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    assert "attendance_2024-01-01_to_2024-01-01.csv" in response.headers["Content-Disposition"]

    rows = list(csv.reader(io.StringIO(response.data.decode("utf-8-sig"))))
    assert rows[0][0] == "Log ID"
    assert len(rows) == 3
    response.close()


def test_storage_error_is_500(client, seeded_store):
    conn = sqlite3.connect(seeded_store.db_path)
    conn.execute("DROP TABLE attendance")
    conn.commit()
    conn.close()

    response = client.get("/api/attendance?date=2024-01-01")
    assert response.status_code == 500
    assert "error" in response.get_json()
