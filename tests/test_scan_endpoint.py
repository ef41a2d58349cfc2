import unittest
from collections.abc import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from attendance_engine.db import Base, get_db
from attendance_engine.errors import FaceCompareError
from attendance_engine.main import app
from attendance_engine.models import Attendance, AuditLog, Group, Member
from attendance_engine.services.face_compare import FaceCompareResult, get_face_comparer

CAPTURED = "https://i.ibb.co/abc123/capture.jpg"


class FixedComparer:
    def __init__(self, scores: dict[str, float] | None = None, *, fail: bool = False):
        self.scores = scores or {}
        self.fail = fail

    def compare(self, captured_image_url: str, reference_image_url: str) -> FaceCompareResult:
        if self.fail:
            raise FaceCompareError("HTTP 401: AUTHENTICATION_ERROR")
        return FaceCompareResult(confidence=self.scores.get(reference_image_url, 1.0))


def override_get_db(session_factory: sessionmaker):
    def _override() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    return _override


class ScanEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        with self.session_factory() as db:
            db.add(Group(id=1, name="KL Office", location="101.6869,3.139", geofence_radius_m=500))
            db.add(Member(id=7, first_name="Aina", last_name="Rahman", photo_url="ref-aina", group_id=1))
            db.commit()
        app.dependency_overrides[get_db] = override_get_db(self.session_factory)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.engine.dispose()

    def _post(self, body: dict) -> object:
        client = TestClient(app)
        return client.post("/api/attendance/scan", json=body)

    def _body(self, *, url: str = CAPTURED, lat: float = 3.139, lon: float = 101.6869) -> dict:
        return {"capturedImageUrl": url, "userLocation": {"latitude": lat, "longitude": lon}}

    def test_successful_check_in(self) -> None:
        app.dependency_overrides[get_face_comparer] = lambda: FixedComparer({"ref-aina": 91.2})

        response = self._post(self._body())

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers.get("X-Request-Id"))
        self.assertEqual(
            response.json(),
            {
                "match": True,
                "user": {"user_id": 7, "first_name": "Aina", "last_name": "Rahman"},
                "confidence": 91.2,
                "action": "check-in",
                "status": "present",
            },
        )
        with self.session_factory() as db:
            self.assertIsNotNone(db.scalar(select(Attendance).where(Attendance.member_id == 7)))
            audit = db.scalar(select(AuditLog))
            assert audit is not None
            self.assertEqual(audit.action, "FACE_SCAN_MATCHED")
            self.assertEqual(audit.actor_id, "7")

    def test_location_mismatch_is_structured_200(self) -> None:
        app.dependency_overrides[get_face_comparer] = lambda: FixedComparer({"ref-aina": 91.2})

        response = self._post(self._body(lat=3.3, lon=101.9))

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["match"], True)
        self.assertEqual(body["error"], "Location mismatch")
        self.assertEqual(body["action"], "check-in")
        self.assertIn("Aina Rahman", body["message"])
        self.assertNotIn("status", body)

    def test_unknown_face_is_structured_200(self) -> None:
        app.dependency_overrides[get_face_comparer] = lambda: FixedComparer()

        response = self._post(self._body())

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"match": False, "error": "User not found", "message": "User not found"})

    def test_face_service_down_is_503(self) -> None:
        app.dependency_overrides[get_face_comparer] = lambda: FixedComparer(fail=True)

        response = self._post(self._body())

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["error"]["code"], "FACE_SERVICE_UNAVAILABLE")

    def test_image_host_outside_allow_list_is_400(self) -> None:
        app.dependency_overrides[get_face_comparer] = lambda: FixedComparer()

        response = self._post(self._body(url="https://evil.example.com/capture.jpg"))

        self.assertEqual(response.status_code, 400)
        error = response.json()["error"]
        self.assertEqual(error["code"], "VALIDATION_ERROR")
        self.assertTrue(error["details"])

    def test_missing_location_is_400(self) -> None:
        app.dependency_overrides[get_face_comparer] = lambda: FixedComparer()

        response = self._post({"capturedImageUrl": CAPTURED})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_out_of_range_latitude_is_400(self) -> None:
        app.dependency_overrides[get_face_comparer] = lambda: FixedComparer()

        response = self._post(self._body(lat=123.0))

        self.assertEqual(response.status_code, 400)

    def test_string_latitude_is_400(self) -> None:
        app.dependency_overrides[get_face_comparer] = lambda: FixedComparer()

        response = self._post(
            {"capturedImageUrl": CAPTURED, "userLocation": {"latitude": "3.139", "longitude": 101.6869}}
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")


if __name__ == "__main__":
    unittest.main()
