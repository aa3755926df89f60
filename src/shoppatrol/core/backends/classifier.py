"""
Risk classification client.

Sends one product to the classification oracle and turns whatever comes
back into a ``RiskAssessment``. Transient failures are retried with
exponential backoff on a rotated credential; every other failure, including
retry exhaustion and unparseable output, becomes an ERROR assessment so the
caller always gets a well-formed result.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from shoppatrol.core.fetch.retries import RetryConfig, build_retrying
from shoppatrol.core.records import ProductRecord, RiskAssessment, RiskLevel

from .base import ApiBackend, ClassifierError, TransientClassifierError, is_retryable_status
from .credentials import CredentialPool
from .restricted import RestrictedCategoryScreen

logger = logging.getLogger(__name__)

PARSE_FAILURE = "parse failure"

# Backend vocabularies seen in the wild, mapped onto canonical tiers
RISK_LABELS: dict[str, RiskLevel] = {
    "none": RiskLevel.NONE,
    "safe": RiskLevel.NONE,
    "なし": RiskLevel.NONE,
    "low": RiskLevel.LOW,
    "低": RiskLevel.LOW,
    "medium": RiskLevel.MEDIUM,
    "moderate": RiskLevel.MEDIUM,
    "mid": RiskLevel.MEDIUM,
    "中": RiskLevel.MEDIUM,
    "high": RiskLevel.HIGH,
    "高": RiskLevel.HIGH,
    "critical": RiskLevel.CRITICAL,
    "重大": RiskLevel.CRITICAL,
    "error": RiskLevel.ERROR,
    "エラー": RiskLevel.ERROR,
}


# =============================================================================
# Payload parsing
# =============================================================================


def extract_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring of ``text``.

    Braces inside JSON string literals (and escaped quotes within them) do
    not count towards the balance.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        # Unbalanced from this brace; try the next opening brace
        start = text.find("{", start + 1)
    return None


def canonical_risk_level(label: Any) -> RiskLevel | None:
    """Map a backend risk label onto a canonical tier, or None if unknown."""
    if label is None:
        return None
    key = str(label).strip()
    if not key:
        return None
    return RISK_LABELS.get(key.lower(), RISK_LABELS.get(key))


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def parse_assessment(text: str) -> RiskAssessment:
    """Turn an oracle response body into an assessment.

    Never raises: unparseable bodies and unknown labels become ERROR.
    """
    fragment = extract_json_object(text or "")
    if fragment is None:
        return RiskAssessment.error(PARSE_FAILURE)

    try:
        payload = json.loads(fragment)
    except json.JSONDecodeError:
        return RiskAssessment.error(PARSE_FAILURE)

    if not isinstance(payload, dict):
        return RiskAssessment.error(PARSE_FAILURE)

    raw_label = payload.get("riskLevel", payload.get("risk_level"))
    reason = str(payload.get("reason") or "")
    level = canonical_risk_level(raw_label)

    if level is None:
        return RiskAssessment.error(
            f"{PARSE_FAILURE}: unrecognized risk level {raw_label!r}",
            raw_backend_label=str(raw_label or ""),
        )

    is_critical = _as_bool(payload.get("isCritical", payload.get("is_critical", False)))
    return RiskAssessment.judged(
        level,
        is_critical=is_critical,
        reason=reason,
        raw_backend_label=str(raw_label),
    )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        return str(body.get("reason") or error or f"HTTP {response.status_code}")
    return f"HTTP {response.status_code}"


# =============================================================================
# Client
# =============================================================================


@dataclass
class CredentialCheck:
    """Outcome of a credential probe."""

    ok: bool
    message: str
    status_code: int | None = None


class RiskClassifier(ApiBackend):
    """Client for the risk classification oracle."""

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 60.0,
        retry: RetryConfig | None = None,
        screen: RestrictedCategoryScreen | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        self.endpoint = endpoint
        self.retry = copy.copy(retry or RetryConfig())
        self.retry.retry_exceptions = (TransientClassifierError,)
        self.screen = screen or RestrictedCategoryScreen()

    @classmethod
    def from_config(cls, config: Any, client: httpx.AsyncClient | None = None) -> "RiskClassifier":
        """Build from a ``SessionConfig``."""
        return cls(
            config.classifier_url,
            timeout=config.request_timeout_ms / 1000.0,
            retry=RetryConfig(
                limit=config.retry_limit,
                base_wait=config.backoff_base_ms / 1000.0,
                jitter=config.backoff_jitter_ms / 1000.0,
            ),
            screen=RestrictedCategoryScreen(config.restricted_keywords),
            client=client,
        )

    async def classify(
        self,
        product: ProductRecord,
        pool: CredentialPool,
        attempt: int = 0,
    ) -> RiskAssessment:
        """Classify one product.

        Args:
            product: Product to assess
            pool: Credentials to rotate through
            attempt: Attempts already spent on this product

        Returns:
            RiskAssessment; ERROR on exhaustion or any non-retriable failure
        """
        start = pool.random_start()

        try:
            retrying = build_retrying(self.retry, offset=attempt, log_level=logging.DEBUG)
            async for state in retrying:
                with state:
                    current = attempt + state.retry_state.attempt_number - 1
                    credential = pool.select(current, start=start)
                    assessment = await self._request(product, credential)
        except TransientClassifierError as e:
            logger.warning("Classification gave up for %r: %s", product.name[:60], e)
            assessment = RiskAssessment.error(f"retries exhausted: {e}")
        except ClassifierError as e:
            logger.warning("Classification failed for %r: %s", product.name[:60], e)
            assessment = RiskAssessment.error(str(e))

        return self.screen.apply(product.name, assessment)

    async def _request(self, product: ProductRecord, credential: str) -> RiskAssessment:
        body = {
            "productName": product.name,
            "imageUrl": product.image_url,
            "apiKey": credential,
        }
        response = await self._post(body)

        if is_retryable_status(response.status_code):
            raise TransientClassifierError(
                f"Classifier busy ({response.status_code}): {_error_message(response)}",
                url=self.endpoint,
                status_code=response.status_code,
            )
        if not response.is_success:
            raise ClassifierError(
                f"Classifier API {response.status_code}: {_error_message(response)}",
                url=self.endpoint,
                status_code=response.status_code,
            )

        return parse_assessment(response.text)

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        """POST with a hard timeout; timeouts and transport errors are transient."""
        client = await self._ensure_client()
        try:
            return await asyncio.wait_for(
                client.post(self.endpoint, json=body),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise TransientClassifierError(
                f"Classifier timed out after {self.timeout:.0f}s",
                url=self.endpoint,
                cause=e,
            ) from e
        except httpx.TransportError as e:
            raise TransientClassifierError(
                f"Classifier transport error: {e}",
                url=self.endpoint,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise ClassifierError(
                f"Classifier request failed: {e}",
                url=self.endpoint,
                cause=e,
            ) from e

    async def check_credential(self, credential: str) -> CredentialCheck:
        """Validate a credential without classifying anything."""
        body = {"isTest": True, "apiKey": credential, "productName": ""}
        try:
            response = await self._post(body)
        except ClassifierError as e:
            return CredentialCheck(ok=False, message=str(e))

        if not response.is_success:
            return CredentialCheck(
                ok=False,
                message=_error_message(response),
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        ok = isinstance(payload, dict) and str(payload.get("status", "")).upper() == "OK"
        message = str(payload.get("message") or "Connected") if ok else "Unexpected acknowledgement"
        return CredentialCheck(ok=ok, message=message, status_code=response.status_code)
