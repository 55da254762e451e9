"""
QuizMaster - API Tests
Exercises the FastAPI surface with an in-memory store and a scripted provider.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), ".."))

import unittest
from unittest.mock import patch

import cv2
import numpy as np
from fastapi.testclient import TestClient

from quizmaster.api import create_app
from quizmaster.config import Settings
from quizmaster.exceptions import ServiceError
from quizmaster.gateway import ExtractionGateway
from quizmaster.llm_provider import LLMResponse
from quizmaster.record_store import InMemoryRecordStore


def _png_bytes(width=64, height=48):
    ok, buf = cv2.imencode(".png", np.full((height, width, 3), 200, dtype=np.uint8))
    assert ok
    return buf.tobytes()


class ScriptedProvider:
    name = "scripted"

    def __init__(self):
        self.text = '{"studentName": "Asha", "score": 8, "totalMarks": 10, "subject": "Science"}'
        self.error = None
        self.calls = []

    def generate(self, parts):
        self.calls.append(parts)
        if self.error is not None:
            raise self.error
        return LLMResponse(text=self.text, provider=self.name, model="scripted-1")


class TestQuizMasterAPI(unittest.TestCase):

    def setUp(self):
        self.provider = ScriptedProvider()
        self.store = InMemoryRecordStore()
        app = create_app(
            settings=Settings(provider="scripted", max_upload_mb=1),
            store=self.store,
            gateway_factory=lambda: ExtractionGateway(self.provider),
        )
        self.client = TestClient(app)
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)

    def _upload(self, data=None, name="paper.png"):
        return {"file": (name, data if data is not None else _png_bytes(), "image/png")}

    def _save(self, name="Asha", score=8, total=10, subject="Science"):
        return self.client.post(
            "/quizzes",
            json={"studentName": name, "score": score, "totalMarks": total, "subject": subject},
        )

    # ── scanning ──────────────────────────────────────────

    def test_health(self):
        r = self.client.get("/health")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["status"], "ok")

    def test_extract_returns_result_and_preview(self):
        r = self.client.post("/scan/extract", files=self._upload())
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertFalse(body["fallbackUsed"])
        self.assertEqual(body["result"]["studentName"], "Asha")
        self.assertEqual(body["result"]["totalMarks"], 10)
        self.assertTrue(body["preview"].startswith("data:image/jpeg;base64,"))
        self.assertEqual(self.store.list_quizzes(), [])

    def test_extract_failure_returns_placeholder(self):
        self.provider.error = ServiceError("upstream 503", status_code=503)
        body = self.client.post("/scan/extract", files=self._upload()).json()
        self.assertTrue(body["fallbackUsed"])
        self.assertEqual(body["result"]["studentName"], "Unknown")
        self.assertEqual(body["error"]["code"], "SERVICE_ERROR")

    def test_unreadable_photo_is_422(self):
        r = self.client.post("/scan/extract", files=self._upload(b"not an image"))
        self.assertEqual(r.status_code, 422)
        self.assertEqual(r.json()["code"], "IMAGE_DECODE_ERROR")

    def test_oversized_upload_is_413(self):
        r = self.client.post("/scan/extract", files=self._upload(b"x" * (1024 * 1024 + 1)))
        self.assertEqual(r.status_code, 413)

    def test_grade_with_reference_preview(self):
        key = self.client.post("/scan/reference", files=self._upload()).json()["preview"]
        r = self.client.post(
            "/scan/grade",
            files=self._upload(),
            data={"referencePreview": key},
        )
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["referencePreview"], key)
        self.assertEqual(len(self.provider.calls[0]), 4)

    def test_grade_without_reference(self):
        r = self.client.post("/scan/grade", files=self._upload())
        self.assertIsNone(r.json()["referencePreview"])
        self.assertEqual(len(self.provider.calls[0]), 2)

    def test_grade_parse_failure_uses_grading_placeholder(self):
        self.provider.text = "The paper is blank."
        body = self.client.post("/scan/grade", files=self._upload()).json()
        self.assertTrue(body["fallbackUsed"])
        self.assertEqual(body["result"]["subject"], "General")
        self.assertEqual(body["error"]["code"], "MALFORMED_RESPONSE")

    # ── records ───────────────────────────────────────────

    def test_save_and_read_back(self):
        first = self._save("Asha", 8, 10)
        second = self._save(" asha ", 9, 10)
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()["studentId"], second.json()["studentId"])

        students = self.client.get("/students").json()
        self.assertEqual([s["name"] for s in students], ["Asha"])

        student_id = students[0]["id"]
        detail = self.client.get(f"/students/{student_id}").json()
        self.assertEqual(detail["quizCount"], 2)
        self.assertEqual(detail["averagePercentage"], 85)

        history = self.client.get(f"/students/{student_id}/history").json()
        self.assertEqual(len(history), 2)

    def test_zero_total_rejected(self):
        r = self._save(total=0)
        self.assertEqual(r.status_code, 422)
        self.assertEqual(self.store.list_students(), [])

    def test_blank_name_rejected(self):
        self.assertEqual(self._save(name="   ").status_code, 422)

    def test_non_finite_marks_rejected_and_stats_keep_working(self):
        self._save("Asha", 8, 10)
        for score, total in (("1e309", "10"), ("NaN", "10"), ("Infinity", "10"), ("5", "1e309"), ("5", "-Infinity")):
            with self.subTest(score=score, total=total):
                raw = '{"studentName": "Bilal", "score": %s, "totalMarks": %s, "subject": "Math"}' % (score, total)
                r = self.client.post("/quizzes", content=raw, headers={"Content-Type": "application/json"})
                self.assertEqual(r.status_code, 422)

        self.assertEqual([s.name for s in self.store.list_students()], ["Asha"])
        stats = self.client.get("/stats")
        self.assertEqual(stats.status_code, 200)
        self.assertEqual(stats.json()["totalQuizzes"], 1)
        self.assertAlmostEqual(stats.json()["averageScore"], 80.0)

    def test_quiz_date_must_be_a_calendar_day(self):
        body = {"studentName": "Asha", "score": 8, "totalMarks": 10, "subject": "Math"}
        for bad in ("not-a-date", "2026-02-30"):
            with self.subTest(date=bad):
                r = self.client.post("/quizzes", json={**body, "date": bad})
                self.assertEqual(r.status_code, 422)
        self.assertEqual(self.store.list_quizzes(), [])

        r = self.client.post("/quizzes", json={**body, "date": " 2026-10-01 "})
        self.assertEqual(r.status_code, 201)
        self.assertEqual(r.json()["date"], "2026-10-01")

    def test_stats(self):
        self.assertEqual(
            self.client.get("/stats").json(),
            {"totalQuizzes": 0, "averageScore": 0.0, "highestScorer": None},
        )
        self._save("A", 8, 10, "Math")
        self._save("B", 9, 10, "Science")
        stats = self.client.get("/stats").json()
        self.assertEqual(stats["totalQuizzes"], 2)
        self.assertAlmostEqual(stats["averageScore"], 85.0)
        self.assertEqual(stats["highestScorer"]["name"], "B")

        subjects = self.client.get("/stats/subjects").json()
        self.assertEqual(subjects, [{"name": "Math", "score": 80}, {"name": "Science", "score": 90}])

    def test_recent_quizzes_limit(self):
        for i in range(7):
            self._save(f"Student {i}")
        self.assertEqual(len(self.client.get("/quizzes/recent").json()), 5)
        self.assertEqual(len(self.client.get("/quizzes/recent?limit=2").json()), 2)

    def test_delete_student_cascades(self):
        student_id = self._save("Asha").json()["studentId"]
        self._save("Bilal")

        r = self.client.delete(f"/students/{student_id}")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(self.client.get(f"/students/{student_id}").status_code, 404)
        self.assertEqual(self.client.get(f"/students/{student_id}/history").status_code, 404)
        self.assertEqual(self.client.get("/stats").json()["totalQuizzes"], 1)
        self.assertEqual(self.client.delete(f"/students/{student_id}").status_code, 404)

    def test_student_search(self):
        for name in ("Asha", "Ashwin", "Bilal"):
            self._save(name)
        names = [s["name"] for s in self.client.get("/students?q=ash").json()]
        self.assertEqual(names, ["Asha", "Ashwin"])


class TestServerEntryPoint(unittest.TestCase):

    def test_module_builds_no_app_on_import(self):
        import quizmaster.api as api_module
        self.assertFalse(hasattr(api_module, "app"))

    def test_main_serves_app_built_from_environment(self):
        from fastapi import FastAPI
        from quizmaster import api as api_module

        settings = Settings(host="127.0.0.1", port=8123, log_level="WARNING")
        with patch.object(api_module.Settings, "from_env", return_value=settings), \
                patch("uvicorn.run") as run:
            api_module.main()

        app = run.call_args[0][0]
        self.assertIsInstance(app, FastAPI)
        self.assertIs(app.state.settings, settings)
        self.assertEqual(run.call_args[1], {"host": "127.0.0.1", "port": 8123})


if __name__ == "__main__":
    unittest.main(verbosity=2)
