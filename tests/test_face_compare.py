from __future__ import annotations

import io
import json
import unittest
from http import client as http_client
from types import SimpleNamespace
from unittest.mock import patch
from urllib import error as urllib_error
from urllib import parse as urllib_parse

from attendance_engine.errors import ApiError, FaceCompareError
from attendance_engine.services.face_compare import FacePlusPlusComparer, get_face_comparer
from attendance_engine.services.matcher import AcceptancePolicy, match_identity


class _FakeResponse:
    def __init__(self, payload: object):
        self._body = json.dumps(payload).encode("utf-8") if not isinstance(payload, bytes) else payload

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def read(self) -> bytes:
        return self._body


class _TruncatedResponse(_FakeResponse):
    def __init__(self) -> None:
        super().__init__(b"")

    def read(self) -> bytes:
        raise http_client.IncompleteRead(b'{"confidence": 9', 40)


def _comparer() -> FacePlusPlusComparer:
    return FacePlusPlusComparer(
        api_key="key",
        api_secret="secret",
        compare_url="https://facepp.test/compare",
        timeout_seconds=5,
    )


class FacePlusPlusComparerTests(unittest.TestCase):
    def test_compare_posts_form_and_reads_confidence(self) -> None:
        payload = {"confidence": 88.4, "thresholds": {"1e-3": 62.327, "1e-4": 69.101}}
        with patch(
            "attendance_engine.services.face_compare.urllib_request.urlopen",
            return_value=_FakeResponse(payload),
        ) as urlopen_mock:
            result = _comparer().compare("https://i.ibb.co/a.jpg", "https://i.ibb.co/b.jpg")

        self.assertEqual(result.confidence, 88.4)
        self.assertEqual(result.suggested_threshold, 62.327)

        request = urlopen_mock.call_args.args[0]
        self.assertEqual(request.get_method(), "POST")
        self.assertEqual(urlopen_mock.call_args.kwargs["timeout"], 5)
        fields = urllib_parse.parse_qs(request.data.decode("utf-8"))
        self.assertEqual(fields["image_url1"], ["https://i.ibb.co/a.jpg"])
        self.assertEqual(fields["image_url2"], ["https://i.ibb.co/b.jpg"])
        self.assertEqual(fields["api_key"], ["key"])

    def test_missing_confidence_means_no_face(self) -> None:
        with patch(
            "attendance_engine.services.face_compare.urllib_request.urlopen",
            return_value=_FakeResponse({"request_id": "abc", "faces1": []}),
        ):
            result = _comparer().compare("https://i.ibb.co/a.jpg", "https://i.ibb.co/b.jpg")

        self.assertEqual(result.confidence, 0.0)
        self.assertIsNone(result.suggested_threshold)

    def test_error_message_in_body_raises(self) -> None:
        with patch(
            "attendance_engine.services.face_compare.urllib_request.urlopen",
            return_value=_FakeResponse({"error_message": "INVALID_IMAGE_URL"}),
        ):
            with self.assertRaises(FaceCompareError):
                _comparer().compare("https://i.ibb.co/a.jpg", "https://i.ibb.co/b.jpg")

    def test_http_error_raises_compare_error(self) -> None:
        http_error = urllib_error.HTTPError(
            url="https://facepp.test/compare",
            code=403,
            msg="Forbidden",
            hdrs=None,  # type: ignore[arg-type]
            fp=io.BytesIO(b'{"error_message": "CONCURRENCY_LIMIT_EXCEEDED"}'),
        )
        with patch(
            "attendance_engine.services.face_compare.urllib_request.urlopen",
            side_effect=http_error,
        ):
            with self.assertRaises(FaceCompareError) as ctx:
                _comparer().compare("https://i.ibb.co/a.jpg", "https://i.ibb.co/b.jpg")

        self.assertIn("CONCURRENCY_LIMIT_EXCEEDED", str(ctx.exception))

    def test_transport_error_raises_compare_error(self) -> None:
        with patch(
            "attendance_engine.services.face_compare.urllib_request.urlopen",
            side_effect=urllib_error.URLError("timed out"),
        ):
            with self.assertRaises(FaceCompareError):
                _comparer().compare("https://i.ibb.co/a.jpg", "https://i.ibb.co/b.jpg")

    def test_invalid_json_raises_compare_error(self) -> None:
        with patch(
            "attendance_engine.services.face_compare.urllib_request.urlopen",
            return_value=_FakeResponse(b"<html>bad gateway</html>"),
        ):
            with self.assertRaises(FaceCompareError):
                _comparer().compare("https://i.ibb.co/a.jpg", "https://i.ibb.co/b.jpg")

    def test_truncated_response_raises_compare_error(self) -> None:
        with patch(
            "attendance_engine.services.face_compare.urllib_request.urlopen",
            return_value=_TruncatedResponse(),
        ):
            with self.assertRaises(FaceCompareError):
                _comparer().compare("https://i.ibb.co/a.jpg", "https://i.ibb.co/b.jpg")

    def test_truncated_response_skips_only_that_candidate(self) -> None:
        candidates = [
            SimpleNamespace(id=1, photo_url="https://i.ibb.co/one.jpg"),
            SimpleNamespace(id=2, photo_url="https://i.ibb.co/two.jpg"),
        ]
        with patch(
            "attendance_engine.services.face_compare.urllib_request.urlopen",
            side_effect=[_TruncatedResponse(), _FakeResponse({"confidence": 92.0})],
        ), self.assertLogs("attendance_engine.matcher", level="WARNING"):
            match = match_identity("https://i.ibb.co/a.jpg", candidates, _comparer(), AcceptancePolicy())

        assert match is not None
        self.assertEqual(match.candidate.id, 2)
        self.assertEqual(match.comparisons, 2)

    def test_get_face_comparer_requires_credentials(self) -> None:
        with patch("attendance_engine.services.face_compare.is_face_service_configured", return_value=False):
            with self.assertRaises(ApiError) as ctx:
                get_face_comparer()

        self.assertEqual(ctx.exception.code, "FACE_SERVICE_NOT_CONFIGURED")


if __name__ == "__main__":
    unittest.main()
