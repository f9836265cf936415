"""Optional ML signal: an external classifier's verdict on one file.

Any object with a ``classify(code, language)`` method returning an
``MLResult`` or ``None`` can be plugged in. ``None`` means the signal is
unavailable for this file and the combiner falls back to the others.
"""

from __future__ import annotations

import json
import logging
import math
import time
from typing import Protocol

import anthropic

from codeguard.detection.signals import MLResult, clamp_unit

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BASE_DELAY = 2.0  # seconds
MAX_CODE_CHARS = 12000
DEFAULT_MODEL = "claude-sonnet-4-20250514"

CLASSIFICATION_PROMPT = """\
You are a code provenance classifier. Estimate the probability that the following \
{language} source file was written mostly by an AI coding assistant rather than a human.

Consider naming, comment style, structure, error handling, and anything unusual. \
Do not explain your reasoning in prose.

## File

```
{code}
```

Respond ONLY with a JSON object:
{{"probability": 0.0-1.0, "features": ["short feature name", "..."]}}
"""


class Classifier(Protocol):
    def classify(self, code: str, language: str) -> MLResult | None: ...


class ClaudeClassifier:
    """Classifier backed by Claude.

    Usage:
        classifier = ClaudeClassifier(anthropic.Anthropic(api_key="sk-ant-..."))
        result = classifier.classify(source, "Python")  # MLResult | None
    """

    def __init__(self, client: anthropic.Anthropic, model: str = DEFAULT_MODEL) -> None:
        self._client = client
        self._model = model

    def classify(self, code: str, language: str) -> MLResult | None:
        prompt = CLASSIFICATION_PROMPT.format(language=language, code=code[:MAX_CODE_CHARS])

        for attempt in range(MAX_RETRIES):
            try:
                response = self._client.messages.create(
                    model=self._model,
                    max_tokens=256,
                    messages=[{"role": "user", "content": prompt}],
                )
                break
            except anthropic.RateLimitError:
                if attempt < MAX_RETRIES - 1:
                    delay = RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(f"Classifier rate limited, retrying in {delay}s...")
                    time.sleep(delay)
                else:
                    logger.warning(f"Classifier rate limited after {MAX_RETRIES} retries, skipping ML signal")
                    return None
            except anthropic.APIError as e:
                logger.warning(f"Classifier unavailable, skipping ML signal: {e}")
                return None

        return _parse_response(response, self._model)


def _parse_response(response: anthropic.types.Message, model: str) -> MLResult | None:
    if not response.content:
        logger.warning("Empty classifier response")
        return None
    text = response.content[0].text.strip()

    # Handle markdown code fences
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()

    try:
        data = json.loads(text)
        probability = float(data["probability"])
    except (json.JSONDecodeError, KeyError, TypeError, ValueError):
        logger.warning(f"Failed to parse classifier response: {text[:200]}")
        return None
    if not math.isfinite(probability):
        logger.warning(f"Classifier returned a non-finite probability: {probability}")
        return None

    features = data.get("features") or []
    return MLResult(
        probability=clamp_unit(probability),
        model_version=model,
        features_used=[str(f) for f in features],
    )
