"""Clients for the hosted models behind scored moderation, /analyze and /ask."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import aiohttp
from openai import AsyncOpenAI, OpenAIError

from ..errors import CollaboratorUnavailable
from .classifier import ToxicityResult

logger = logging.getLogger(__name__)

HF_INFERENCE_URL = "https://router.huggingface.co/hf-inference/models"

# Labels that mean "not toxic" across the common toxicity checkpoints.
NON_TOXIC_LABELS = frozenset({"non-toxic", "not_toxic", "neutral", "label_0", "ok"})

ASK_CONTEXT = """\
The capital of Alaska is Juneau. The capital of California is Sacramento.
The capital of Texas is Austin. The capital of Florida is Tallahassee.
The capital of New York is Albany. The Earth is the third planet from the Sun.
The Moon is Earth's only natural satellite. The Sun is a star at the center of our solar system.
Paris is the capital of France. London is the capital of England.
Tokyo is the capital of Japan. Beijing is the capital of China.

Basic Math Facts:
1 + 1 = 2. 2 + 2 = 4. 3 + 3 = 6. 4 + 4 = 8. 5 + 5 = 10.
2 x 2 = 4. 3 x 3 = 9. 4 x 4 = 16. 5 x 5 = 25. 10 x 10 = 100.
10 - 5 = 5. 20 - 10 = 10. 15 - 5 = 10. 100 - 50 = 50.
10 / 2 = 5. 100 / 4 = 25. 81 / 9 = 9. 50 / 5 = 10.

Math Formulas:
Area of a square = side x side
Area of a rectangle = length x width
Area of a circle = pi x radius squared
Circumference of a circle = 2 x pi x radius
Volume of a cube = side cubed
Pi is approximately 3.14159

Common Conversions:
1 kilometer = 1000 meters
1 mile = 1.60934 kilometers
1 hour = 60 minutes
1 minute = 60 seconds
1 kilogram = 1000 grams
1 pound = 0.453592 kilograms
"""


@dataclass(frozen=True)
class SentimentResult:
    label: str
    score: float


@dataclass(frozen=True)
class AnswerResult:
    answer: str
    score: Optional[float] = None


def _flatten_labels(payload: Any) -> List[Dict[str, Any]]:
    """Text-classification responses come back as ``[[{...}]]`` or ``[{...}]``."""

    if isinstance(payload, list) and payload and isinstance(payload[0], list):
        payload = payload[0]
    if not isinstance(payload, list):
        raise CollaboratorUnavailable("Unexpected classification response from the model.")
    return [item for item in payload if isinstance(item, dict) and "label" in item]


def toxicity_from_labels(labels: Iterable[Dict[str, Any]]) -> ToxicityResult:
    """Reduce a label distribution to a single toxicity probability."""

    toxic: Optional[ToxicityResult] = None
    benign_score: Optional[float] = None
    for item in labels:
        label = str(item["label"]).lower()
        score = float(item.get("score", 0.0))
        if label in NON_TOXIC_LABELS:
            benign_score = score
            continue
        if toxic is None or score > toxic.score:
            toxic = ToxicityResult(label=label, score=score)
    if toxic is not None:
        return toxic
    if benign_score is not None:
        return ToxicityResult(label="toxic", score=1.0 - benign_score)
    raise CollaboratorUnavailable("The toxicity model returned no labels.")


class InferenceClient:
    """Hugging Face Inference API client for toxicity, sentiment and Q&A."""

    def __init__(
        self,
        token: Optional[str],
        *,
        toxicity_model: str = "unitary/toxic-bert",
        sentiment_model: str = "distilbert-base-uncased-finetuned-sst-2-english",
        qa_model: str = "deepset/roberta-base-squad2",
        base_url: str = HF_INFERENCE_URL,
        timeout: float = 15.0,
    ):
        self._token = token
        self._toxicity_model = toxicity_model
        self._sentiment_model = sentiment_model
        self._qa_model = qa_model
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    def is_configured(self) -> bool:
        return bool(self._token)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self._token}"},
                timeout=self._timeout,
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post(self, model: str, payload: Dict[str, Any]) -> Any:
        if not self._token:
            raise CollaboratorUnavailable("HUGGING_FACE_TOKEN is not configured.")
        session = await self._get_session()
        url = f"{self._base_url}/{model}"
        try:
            async with session.post(url, json=payload) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.warning(
                        "Inference call to %s failed with %s: %s", model, response.status, body[:200]
                    )
                    raise CollaboratorUnavailable(
                        f"The {model} model is unavailable right now (HTTP {response.status})."
                    )
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise CollaboratorUnavailable(f"Could not reach the {model} model.") from exc

    async def classify_toxicity(self, text: str) -> ToxicityResult:
        payload = await self._post(self._toxicity_model, {"inputs": text})
        return toxicity_from_labels(_flatten_labels(payload))

    async def classify_sentiment(self, text: str) -> SentimentResult:
        labels = _flatten_labels(await self._post(self._sentiment_model, {"inputs": text}))
        if not labels:
            raise CollaboratorUnavailable("The sentiment model returned no labels.")
        best = max(labels, key=lambda item: float(item.get("score", 0.0)))
        return SentimentResult(label=str(best["label"]).upper(), score=float(best["score"]))

    async def answer_question(self, question: str, context: str = ASK_CONTEXT) -> AnswerResult:
        payload = await self._post(
            self._qa_model, {"inputs": {"question": question, "context": context}}
        )
        if isinstance(payload, list):
            payload = payload[0] if payload else {}
        if not isinstance(payload, dict):
            raise CollaboratorUnavailable("Unexpected answer format from the Q&A model.")
        answer = str(payload.get("answer") or "").strip()
        score = payload.get("score")
        return AnswerResult(answer=answer, score=float(score) if score is not None else None)


class OpenAIModerationScorer:
    """Toxicity scores from OpenAI's moderation endpoint."""

    def __init__(self, api_key: Optional[str], model: str = "omni-moderation-latest"):
        self._model = model
        self._client = AsyncOpenAI(api_key=api_key) if api_key else None

    def is_configured(self) -> bool:
        return self._client is not None

    async def classify_toxicity(self, text: str) -> ToxicityResult:
        if self._client is None:
            raise CollaboratorUnavailable("OPENAI_API_KEY is not configured.")
        try:
            response = await self._client.moderations.create(model=self._model, input=text)
        except OpenAIError as exc:
            raise CollaboratorUnavailable("The OpenAI moderation endpoint is unavailable.") from exc

        result = response.results[0]
        scores = {
            category: float(score)
            for category, score in result.category_scores.model_dump().items()
            if isinstance(score, (int, float))
        }
        if not scores:
            return ToxicityResult(label="none", score=0.0)
        category = max(scores, key=scores.get)
        return ToxicityResult(label=category, score=scores[category])
