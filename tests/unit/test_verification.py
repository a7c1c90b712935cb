"""
Unit tests for the Gemini proof judge.

HTTP traffic goes through FakeHttpSession; no network access.
"""

import asyncio
import base64
import json

import aiohttp
import pytest

from questline.modules.challenges.verification import (
    GeminiProofJudge,
    ProofJudge,
    ProofVerdict,
)
from questline.modules.shared.exceptions import ExternalDependencyError
from tests.fixtures.fakes import FakeHttpSession, FakeProofJudge, FakeResponse, gemini_body

IMAGE_URL = "https://cdn.example.test/proof.png"


def make_judge(session, **kwargs):
    return GeminiProofJudge(
        "https://model.example.test/generate",
        "test-key",
        session=session,
        **kwargs,
    )


def image_response(data=b"\x89PNG...", content_type="image/png", status=200):
    return FakeResponse(status, data=data, content_type=content_type)


class TestVerdictParsing:
    def test_plain_json(self):
        verdict = GeminiProofJudge.parse_verdict_text(
            '{"approved": true, "reason": "Shows a finished run", "confidence": 0.82}'
        )
        assert verdict == ProofVerdict(approved=True, reason="Shows a finished run", confidence=0.82)

    def test_fenced_json(self):
        text = '```json\n{"approved": false, "reason": "Blurry", "confidence": 0.4}\n```'
        verdict = GeminiProofJudge.parse_verdict_text(text)
        assert verdict.approved is False
        assert verdict.reason == "Blurry"

    def test_confidence_is_clamped_and_defaulted(self):
        assert GeminiProofJudge.parse_verdict_text('{"approved": true, "confidence": 1.7}').confidence == 1.0
        assert GeminiProofJudge.parse_verdict_text('{"approved": true, "confidence": -2}').confidence == 0.0
        verdict = GeminiProofJudge.parse_verdict_text('{"approved": true}')
        assert verdict.confidence == 0.0
        assert verdict.reason == ""

    @pytest.mark.parametrize(
        "text",
        [
            "I think it is approved",
            '{"approved": "yes", "reason": "x"}',
            '{"reason": "missing decision"}',
            '["approved"]',
            '{"approved": true, "confidence": "high"}',
            '{"approved": true, "confidence": true}',
        ],
    )
    def test_unusable_verdicts(self, text):
        with pytest.raises(ExternalDependencyError):
            GeminiProofJudge.parse_verdict_text(text)

    def test_extract_text(self):
        assert GeminiProofJudge.extract_text(gemini_body("hello")) == "hello"

    @pytest.mark.parametrize(
        "body",
        [{}, {"candidates": []}, {"candidates": [{"content": {"parts": [{"text": 3}]}}]}],
    )
    def test_extract_text_missing(self, body):
        with pytest.raises(ExternalDependencyError):
            GeminiProofJudge.extract_text(body)

    def test_build_request_inlines_image(self):
        payload = GeminiProofJudge.build_request("Run 5k", b"abc", "image/png")
        parts = payload["contents"][0]["parts"]

        assert "Run 5k" in parts[0]["text"]
        assert parts[1]["inline_data"] == {
            "mime_type": "image/png",
            "data": base64.b64encode(b"abc").decode("ascii"),
        }


@pytest.mark.asyncio
class TestVerify:
    async def test_approved(self):
        verdict_text = json.dumps({"approved": True, "reason": "Tracker shows 5.1 km", "confidence": 0.9})
        session = FakeHttpSession(
            get=image_response(),
            post=FakeResponse(200, body=gemini_body(verdict_text)),
        )
        judge = make_judge(session)

        verdict = await judge.verify(IMAGE_URL, "Run 5k")

        assert verdict.approved is True
        assert session.get_calls == [IMAGE_URL]
        sent = session.post_calls[0]
        assert sent["params"] == {"key": "test-key"}
        inline = sent["json"]["contents"][0]["parts"][1]["inline_data"]
        assert inline["mime_type"] == "image/png"

    async def test_non_image_content_type_defaults_to_jpeg(self):
        session = FakeHttpSession(
            get=image_response(content_type="application/octet-stream"),
            post=FakeResponse(200, body=gemini_body('{"approved": false, "reason": "no"}')),
        )

        verdict = await make_judge(session).verify(IMAGE_URL, "Run 5k")

        inline = session.post_calls[0]["json"]["contents"][0]["parts"][1]["inline_data"]
        assert inline["mime_type"] == "image/jpeg"
        assert verdict.approved is False

    async def test_missing_api_key(self):
        judge = GeminiProofJudge("https://model.example.test/generate", "", session=FakeHttpSession())
        with pytest.raises(ExternalDependencyError):
            await judge.verify(IMAGE_URL, "Run 5k")

    async def test_image_download_failure(self):
        session = FakeHttpSession(get=image_response(status=404))
        with pytest.raises(ExternalDependencyError) as exc_info:
            await make_judge(session).verify(IMAGE_URL, "Run 5k")
        assert exc_info.value.details["status"] == 404
        assert session.post_calls == []

    async def test_image_too_large(self):
        session = FakeHttpSession(get=image_response(data=b"x" * 2048))
        with pytest.raises(ExternalDependencyError):
            await make_judge(session, max_image_bytes=1024).verify(IMAGE_URL, "Run 5k")

    async def test_model_http_error(self):
        session = FakeHttpSession(get=image_response(), post=FakeResponse(503, body={}))
        with pytest.raises(ExternalDependencyError) as exc_info:
            await make_judge(session).verify(IMAGE_URL, "Run 5k")
        assert exc_info.value.is_retryable

    async def test_transport_error(self):
        session = FakeHttpSession(get=aiohttp.ClientConnectionError("refused"))
        with pytest.raises(ExternalDependencyError):
            await make_judge(session).verify(IMAGE_URL, "Run 5k")

    async def test_timeout(self):
        session = FakeHttpSession(get=image_response(), post=asyncio.TimeoutError())
        with pytest.raises(ExternalDependencyError):
            await make_judge(session).verify(IMAGE_URL, "Run 5k")

    async def test_non_object_body(self):
        session = FakeHttpSession(get=image_response(), post=FakeResponse(200, body=["nope"]))
        with pytest.raises(ExternalDependencyError):
            await make_judge(session).verify(IMAGE_URL, "Run 5k")

    async def test_injected_session_is_not_closed(self):
        session = FakeHttpSession()
        judge = make_judge(session)
        await judge.shutdown()
        assert session.closed is False


class TestProtocol:
    def test_judges_satisfy_protocol(self):
        assert isinstance(make_judge(FakeHttpSession()), ProofJudge)
        assert isinstance(FakeProofJudge(), ProofJudge)
