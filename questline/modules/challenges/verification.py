"""
AI proof judge client.

Challenges with `verification_type == "ai"` send the participant's proof
image to a multimodal model and let its verdict decide approval. The
engine only owns the client; the model itself is an external collaborator.

The judge fails closed: a missing API key, a transport error, a timeout,
a non-2xx status or an unparseable answer all raise
`ExternalDependencyError`, so the caller's unit of work rolls back and
nothing is approved.
"""

from __future__ import annotations

import asyncio
import base64
import json
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import aiohttp

from questline.core.config import Config
from questline.core.logging.logger import get_logger
from questline.modules.shared.exceptions import ExternalDependencyError

logger = get_logger(__name__)

DEPENDENCY = "proof_judge"
DEFAULT_MIME_TYPE = "image/jpeg"

_FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```")


@dataclass(frozen=True)
class ProofVerdict:
    approved: bool
    reason: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {"approved": self.approved, "reason": self.reason, "confidence": self.confidence}


@runtime_checkable
class ProofJudge(Protocol):
    async def verify(self, proof_image_url: str, task_description: str) -> ProofVerdict:
        """Judge whether the image proves the task was done."""
        ...


class GeminiProofJudge:
    """
    ProofJudge backed by the Gemini `generateContent` endpoint.

    The image is downloaded, base64-encoded as `inline_data` and sent with
    a prompt asking for a JSON verdict `{approved, reason, confidence}`.

    A `ClientSession` may be injected; otherwise one is opened by
    `initialize()` (or lazily on first use) and closed by `shutdown()`.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        timeout_seconds: float = 30,
        max_image_bytes: int = 10 * 1024 * 1024,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.max_image_bytes = max_image_bytes
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, session: Optional[aiohttp.ClientSession] = None) -> "GeminiProofJudge":
        return cls(
            Config.PROOF_JUDGE_URL,
            Config.PROOF_JUDGE_API_KEY,
            timeout_seconds=Config.PROOF_JUDGE_TIMEOUT_SECONDS,
            max_image_bytes=Config.PROOF_JUDGE_MAX_IMAGE_BYTES,
            session=session,
        )

    async def initialize(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

    async def shutdown(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify(self, proof_image_url: str, task_description: str) -> ProofVerdict:
        if not self.api_key:
            raise ExternalDependencyError(DEPENDENCY, "no API key configured")
        if not proof_image_url:
            raise ExternalDependencyError(DEPENDENCY, "no proof image supplied")

        await self.initialize()

        try:
            image, mime_type = await self._download_image(proof_image_url)
            body = await self._generate(self.build_request(task_description, image, mime_type))
        except asyncio.TimeoutError as exc:
            logger.warning("Proof judge timed out", extra={"image_url": proof_image_url})
            raise ExternalDependencyError(DEPENDENCY, "request timed out") from exc
        except aiohttp.ClientError as exc:
            logger.warning(
                "Proof judge transport error",
                extra={"image_url": proof_image_url, "error": str(exc)},
            )
            raise ExternalDependencyError(DEPENDENCY, f"transport error: {exc}") from exc

        verdict = self.parse_verdict_text(self.extract_text(body))
        logger.info(
            "Proof judged",
            extra={"approved": verdict.approved, "confidence": verdict.confidence},
        )
        return verdict

    async def _download_image(self, url: str) -> tuple[bytes, str]:
        if self._session is None:
            raise RuntimeError("Session not initialized. Call initialize() first.")
        async with self._session.get(url, timeout=self.timeout) as response:
            if response.status != 200:
                raise ExternalDependencyError(
                    DEPENDENCY,
                    f"image download returned HTTP {response.status}",
                    details={"status": response.status},
                )
            data = await response.read()
            content_type = response.content_type or ""

        if len(data) > self.max_image_bytes:
            raise ExternalDependencyError(
                DEPENDENCY,
                "proof image too large",
                details={"size": len(data), "max_size": self.max_image_bytes},
            )
        mime_type = content_type if content_type.startswith("image/") else DEFAULT_MIME_TYPE
        return data, mime_type

    async def _generate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self._session is None:
            raise RuntimeError("Session not initialized. Call initialize() first.")
        async with self._session.post(
            self.api_url,
            params={"key": self.api_key},
            json=payload,
            timeout=self.timeout,
        ) as response:
            if not 200 <= response.status < 300:
                raise ExternalDependencyError(
                    DEPENDENCY,
                    f"model returned HTTP {response.status}",
                    details={"status": response.status},
                )
            try:
                body = await response.json(content_type=None)
            except ValueError as exc:
                raise ExternalDependencyError(DEPENDENCY, "response body is not JSON") from exc

        if not isinstance(body, dict):
            raise ExternalDependencyError(DEPENDENCY, "response body is not an object")
        return body

    # ------------------------------------------------------------------
    # Request / response shaping
    # ------------------------------------------------------------------

    @staticmethod
    def build_prompt(task_description: str) -> str:
        return (
            "You are verifying proof for a challenge task.\n"
            f"Task: {task_description}\n\n"
            "Look at the image and decide whether it shows the task was completed.\n"
            "Respond with JSON only, in this exact shape:\n"
            '{"approved": true or false, "reason": "short explanation", '
            '"confidence": number between 0 and 1}'
        )

    @classmethod
    def build_request(cls, task_description: str, image: bytes, mime_type: str) -> Dict[str, Any]:
        return {
            "contents": [
                {
                    "parts": [
                        {"text": cls.build_prompt(task_description)},
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(image).decode("ascii"),
                            }
                        },
                    ]
                }
            ]
        }

    @staticmethod
    def extract_text(body: Dict[str, Any]) -> str:
        """Text of the first candidate part: `candidates[0].content.parts[0].text`."""
        try:
            text = body["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ExternalDependencyError(DEPENDENCY, "response has no candidate text") from exc
        if not isinstance(text, str):
            raise ExternalDependencyError(DEPENDENCY, "candidate text is not a string")
        return text

    @staticmethod
    def parse_verdict_text(text: str) -> ProofVerdict:
        """
        Parse the model's JSON verdict, tolerating Markdown code fences.

        `approved` must be a real boolean. `confidence` defaults to 0.0 and
        is clamped to [0, 1].
        """
        cleaned = _FENCE_RE.sub("", text).strip()
        try:
            data = json.loads(cleaned)
        except ValueError as exc:
            raise ExternalDependencyError(
                DEPENDENCY, "verdict is not valid JSON", details={"text": text[:200]}
            ) from exc

        if not isinstance(data, dict) or not isinstance(data.get("approved"), bool):
            raise ExternalDependencyError(
                DEPENDENCY, "verdict is missing a boolean 'approved'", details={"text": text[:200]}
            )

        reason = data.get("reason")
        confidence = data.get("confidence", 0.0)
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise ExternalDependencyError(DEPENDENCY, "verdict confidence is not a number")
        if not math.isfinite(confidence):
            raise ExternalDependencyError(DEPENDENCY, "verdict confidence is not finite")

        return ProofVerdict(
            approved=data["approved"],
            reason=str(reason) if reason is not None else "",
            confidence=min(1.0, max(0.0, float(confidence))),
        )
