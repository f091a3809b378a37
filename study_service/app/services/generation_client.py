"""호스팅된 생성 함수(OCR, 답변, 퀴즈, 플래시카드, 마인드맵, 노트 보강) 호출 클라이언트."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx

from ..config import GenerationConfig
from ..exceptions import GenerationError


logger = logging.getLogger(__name__)

MIND_MAP_FALLBACK_ROOT = "Mind Map"

_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\n?|```$")
_OUTLINE_BULLET = re.compile(r"^(?:[-*\u2022]|\d+[.)])\s*(.+)$")


def _outline_to_mind_map(text: str) -> dict[str, Any]:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    root = lines[0] if lines else MIND_MAP_FALLBACK_ROOT
    nodes = []
    for line in lines[1:]:
        match = _OUTLINE_BULLET.match(line)
        nodes.append({"label": match.group(1) if match else line})
    return {"root": root, "nodes": nodes}


def normalize_mind_map(raw: str, notes_content: str) -> dict[str, Any]:
    """생성 함수가 돌려준 마인드맵을 {"root": str, "nodes": list} 형태로 맞춘다.

    코드 블록으로 감싼 JSON, 구조가 다른 객체, 들여쓴 개요 텍스트를 모두 받아들인다.
    """
    text = _CODE_FENCE.sub("", raw.strip())
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        text = text[first : last + 1]

    try:
        parsed = json.loads(text)
    except ValueError:
        logger.info("mind map is not JSON, parsing as outline")
        return _outline_to_mind_map(raw)

    if isinstance(parsed, dict):
        if isinstance(parsed.get("root"), str) and isinstance(parsed.get("nodes"), list):
            return {"root": parsed["root"], "nodes": parsed["nodes"]}
        return {
            "root": notes_content[:30] or MIND_MAP_FALLBACK_ROOT,
            "nodes": [{"label": key} for key in parsed],
        }
    return _outline_to_mind_map(raw)


class GenerationClient:
    """생성 함수 서버에 JSON 으로 요청하고 지정한 응답 필드를 꺼낸다.

    네트워크 오류, 인증 실패, 함수 미배포, 빈 응답은 모두 GenerationError 로 바꾼다.
    """

    def __init__(
        self,
        config: GenerationConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not config.base_url:
            raise RuntimeError("GENERATION_BASE_URL environment variable is required")
        headers = {"Content-Type": "application/json"}
        if config.bearer_token:
            headers["Authorization"] = f"Bearer {config.bearer_token}"
        self._client = httpx.Client(
            base_url=config.base_url.rstrip("/"),
            timeout=config.timeout_seconds,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _call(self, path: str, body: dict[str, Any], field: str) -> str:
        try:
            resp = self._client.post(path, json=body)
        except httpx.TimeoutException as exc:
            logger.error("generation call %s timed out", path)
            raise GenerationError("generation service timed out, please try again") from exc
        except httpx.RequestError as exc:
            logger.error("generation call %s failed: %s", path, exc)
            raise GenerationError("network error, check your connection and try again") from exc

        if resp.status_code == 401:
            raise GenerationError("generation service rejected the credentials")
        if resp.status_code == 404:
            raise GenerationError(f"generation function {path} is not deployed")
        if resp.status_code != 200:
            logger.error(
                "generation call %s returned status=%d body=%s",
                path,
                resp.status_code,
                resp.text[:500],
            )
            raise GenerationError(f"generation service returned status {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise GenerationError(f"generation function {path} returned invalid JSON") from exc

        value = data.get(field) if isinstance(data, dict) else None
        if not value:
            logger.warning("generation call %s returned no %s", path, field)
            raise GenerationError(f"generation function {path} returned no {field}")
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False)

    def extract_text(self, image_base64: str) -> str:
        return self._call("/process-image", {"imageBase64": image_base64}, "text")

    def answer(self, extracted_text: str, feature: str) -> str:
        return self._call(
            "/getAnswerFromGemini",
            {"extractedText": extracted_text, "feature": feature},
            "answer",
        )

    def generate_quiz(self, notes_content: str, quiz_type: str = "multiple-choice") -> str:
        return self._call(
            "/genrateQuizFromNotes",
            {"notesContent": notes_content, "quizType": quiz_type},
            "quiz",
        )

    def generate_flash_cards(
        self, notes_content: str, card_type: str = "term-definition"
    ) -> str:
        return self._call(
            "/genrateFlashCardFromNotes",
            {"notesContent": notes_content, "cardType": card_type},
            "flashcards",
        )

    def generate_mind_map(self, notes_content: str, mode: str = "topic") -> str:
        """마인드맵을 만들어 정규화한 JSON 문자열로 돌려준다."""
        raw = self._call(
            "/generateMindMapFromNotes",
            {"notesContent": notes_content, "mode": mode},
            "mindmap",
        )
        return json.dumps(normalize_mind_map(raw, notes_content), ensure_ascii=False)

    def enhance_notes(self, notes_content: str) -> str:
        return self._call("/enhancenotes", {"notesContent": notes_content}, "enhancedNotes")
