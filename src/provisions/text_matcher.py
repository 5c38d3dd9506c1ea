"""
AI text matching.

Asks an OpenAI chat model how closely a provision's text relates to an
ontology term definition. Any failure returns None so that callers fall
back to citation-only scoring.
"""

import json
import logging
import math
import os
from dataclasses import dataclass
from typing import Optional

from openai import OpenAI

from config.settings import MatchingSettings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextMatch:
    similarity: float
    justification: str = ""


class OpenAITextMatcher:
    """Semantic similarity between provision text and a term definition."""

    SYSTEM_PROMPT = (
        "You are a legal analyst matching legislative provisions to a legal ontology "
        "for a benefits eligibility system. Always respond with valid JSON."
    )

    MATCH_PROMPT = """Rate how directly the legislative provision below affects the ontology term.

PROVISION ({citation}):
```
{provision_text}
```

TERM: {term_name}
DEFINITION: {definition}

Respond with a JSON object in this exact format:
{{
    "similarity": <float between 0.0 and 1.0>,
    "justification": "<one or two sentences explaining the relationship>"
}}"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        settings: Optional[MatchingSettings] = None,
        client: Optional[OpenAI] = None,
    ):
        self.settings = settings or get_settings().matching
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self._client = client

    @property
    def client(self) -> OpenAI:
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise ValueError(
                    "OpenAI API key required. Set OPENAI_API_KEY environment variable."
                )
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def is_available(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _truncate(self, text: str) -> str:
        limit = self.settings.max_text_chars
        if len(text) <= limit:
            return text
        half = limit // 2
        return text[:half] + "\n...[truncated]...\n" + text[-half:]

    def similarity(
        self,
        provision_text: str,
        term_name: str,
        definition: str,
        citation: Optional[str] = None,
    ) -> Optional[TextMatch]:
        """
        Score the relationship between a provision and a term.

        Returns:
            TextMatch with similarity clamped to [0, 1], or None when the
            model is unavailable or its answer cannot be used.
        """
        if not self.is_available():
            logger.debug("Text matcher unavailable: OPENAI_API_KEY not configured")
            return None

        prompt = self.MATCH_PROMPT.format(
            citation=citation or "no citation",
            provision_text=self._truncate(provision_text),
            term_name=term_name,
            definition=definition or term_name,
        )

        try:
            response = self.client.chat.completions.create(
                model=self.settings.openai_model,
                messages=[
                    {"role": "system", "content": self.SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.1,
                max_tokens=300,
                response_format={"type": "json_object"},
                timeout=self.settings.openai_timeout,
            )
            result = json.loads(response.choices[0].message.content)
            similarity = float(result["similarity"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Unusable text matcher response for term {term_name}: {e}")
            return None
        except Exception as e:
            logger.error(f"Text matcher request failed for term {term_name}: {e}")
            return None

        if not math.isfinite(similarity):
            logger.warning(f"Non-finite similarity {similarity} for term {term_name}")
            return None

        return TextMatch(
            similarity=min(max(similarity, 0.0), 1.0),
            justification=str(result.get("justification") or ""),
        )
