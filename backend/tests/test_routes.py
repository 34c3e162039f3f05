"""
Tests for the HTTP routes — finance and exam endpoints over an in-memory store.
"""

import os
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.store import MemoryStore, reset_default_store
from main import app


@pytest.fixture
def client():
    reset_default_store(MemoryStore())
    yield TestClient(app)
    reset_default_store(None)


PAYMENTS = [
    {"studentId": "S1", "className": "JSS1", "status": "paid", "amount": 100,
     "updatedAt": "2026-01-05T10:00:00Z"},
    {"studentId": "S2", "className": "JSS2", "status": "pending", "amount": 40,
     "createdAt": "2026-01-06T10:00:00Z"},
]

SCHEDULE = {
    "subject": "Mathematics",
    "classId": "jss1",
    "term": "first",
    "session": "2025/2026",
    "examDate": "2026-01-20",
    "startTime": "09:00",
    "endTime": "10:00",
}


class TestHealth:
    def test_health(self, client):
        res = client.get("/api/health")
        assert res.status_code == 200
        assert res.json()["status"] == "ok"


class TestFinanceRoutes:
    def test_analytics_before_sync(self, client):
        assert client.get("/api/finance/analytics").status_code == 404

    def test_sync_requires_payments(self, client):
        assert client.post("/api/finance/analytics/sync", json={}).status_code == 400
        assert client.post("/api/finance/analytics/sync", json={"payments": "x"}).status_code == 400

    def test_sync_and_read(self, client):
        res = client.post("/api/finance/analytics/sync", json={"payments": PAYMENTS})
        assert res.status_code == 200
        body = res.json()
        assert set(body["periods"]) == {
            "current-term", "last-term", "current-session", "last-session", "all",
        }
        assert body["periods"]["all"]["summary"]["totalCollected"] == 100

        classes = client.get("/api/finance/class-collection", params={"period": "all", "class": "JSS1"})
        assert [c["class"] for c in classes.json()] == ["JSS1"]

        defaulters = client.get("/api/finance/defaulters").json()
        assert [d["id"] for d in defaulters] == ["S2"]

        months = client.get("/api/finance/fee-collection", params={"period": "all"}).json()
        assert sum(m["collected"] for m in months) == 100


class TestExamRoutes:
    def test_schedule_validation(self, client):
        assert client.post("/api/exams/schedules", json={"subject": "Maths"}).status_code == 400

    def test_full_flow(self, client):
        exam = client.post("/api/exams/schedules", json=SCHEDULE).json()
        assert exam["term"] == "First Term"

        res = client.post(
            f"/api/exams/{exam['id']}/results",
            json={"results": [{"studentId": "S1", "ca1": 19, "ca2": 18, "assignment": 19, "exam": 36}]},
        )
        assert res.status_code == 200
        assert res.json()[0]["grade"] == "A"

        published = client.post(f"/api/exams/{exam['id']}/publish").json()
        assert published[0]["status"] == "published"

        report = client.get("/api/exams/cumulative/S1").json()
        assert report["cumulativeAverage"] == 92

        summary = client.get(f"/api/exams/{exam['id']}/summary").json()
        assert summary["distribution"]["A"] == 1

        deleted = client.delete(f"/api/exams/schedules/{exam['id']}").json()
        assert deleted == {"deleted": True}
        assert client.get("/api/exams/cumulative/S1").status_code == 404

    def test_results_for_unknown_exam(self, client):
        res = client.post("/api/exams/missing/results", json={"results": [{"studentId": "S1"}]})
        assert res.status_code == 404

    def test_empty_results(self, client):
        assert client.post("/api/exams/missing/results", json={"results": []}).status_code == 400

    def test_grade_scale(self, client):
        scale = client.get("/api/exams/grade-scale").json()["grade_scale"]
        assert scale[0]["label"] == "A"

    def test_cumulative_path_not_taken_as_exam_id(self, client):
        res = client.get("/api/exams/cumulative/results")
        assert res.status_code == 404
        assert res.json()["detail"] == "No results found for student 'results'."

    def test_update_schedule(self, client):
        exam = client.post("/api/exams/schedules", json=SCHEDULE).json()
        res = client.patch(f"/api/exams/schedules/{exam['id']}", json={"endTime": "11:00"})
        assert res.status_code == 200
        assert res.json()["durationMinutes"] == 120

    def test_update_unknown_schedule(self, client):
        res = client.patch("/api/exams/schedules/missing", json={"venue": "Hall A"})
        assert res.status_code == 404
