import logging
from http import HTTPStatus
from typing import Any, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from hybrid_idp.core.config import ERROR_BODY_MAX_CHARS
from hybrid_idp.core.exceptions import ExternalServiceError
from hybrid_idp.core.settings import get_settings
from hybrid_idp.models.dto import AnalysisField, AnalysisResult

logger = logging.getLogger(__name__)

SERVICE_NAME = "ASSISTED"


def parse_analysis_response(resp: dict) -> AnalysisResult:
    """Normalize the analysis service response.

    Accepts ``name`` as an alias of ``field_name`` and skips fields
    without a value.
    """
    fields = []
    for raw in resp.get("fields") or []:
        if not isinstance(raw, dict):
            continue
        name = raw.get("field_name") or raw.get("name")
        value = raw.get("value")
        if not name or value in (None, ""):
            continue
        fields.append(
            AnalysisField(
                field_name=str(name),
                value=str(value),
                confidence=float(raw.get("confidence", 0.9)),
                field_type=raw.get("field_type"),
            )
        )

    return AnalysisResult(
        success=bool(resp.get("success")),
        fields=fields,
        document_type=resp.get("document_type"),
        confidence=float(resp.get("confidence") or 0.0),
        tokens_used=int(resp.get("tokens_used") or 0),
        cost=float(resp.get("cost") or 0.0),
        content=resp.get("content"),
        error_message=resp.get("error") or resp.get("error_message"),
    )


def _raise_service_error(error_type: str, details: dict[str, Any], exc: Exception) -> None:
    raise ExternalServiceError(
        service_name=SERVICE_NAME,
        error_type=error_type,
        details=details,
    ) from exc


class AssistedAnalysisClient:
    """HTTP client for the assisted analysis service.

    Use as an async context manager; the underlying connection pool lives
    between ``__aenter__`` and ``__aexit__``.
    """

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        timeout: Optional[float] = None,
        verify: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.endpoint_url = endpoint_url or settings.ASSISTED_ENDPOINT_URL
        self.timeout = timeout if timeout is not None else settings.ASSISTED_CLIENT_TIMEOUT_SECONDS
        self.verify = settings.ASSISTED_VERIFY_SSL if verify is None else verify
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=self.timeout, verify=self.verify, transport=self._transport
        )
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def analyze(self, document_path: str, instructions: str) -> AnalysisResult:
        """POST a document reference and instructions, return parsed fields.

        Raises:
            ExternalServiceError: On any network, HTTP or payload failure.
        """
        if not self._client:
            raise RuntimeError("Client not started")

        payload = {"document_path": document_path, "instructions": instructions}
        try:
            resp = await self._client.post(self.endpoint_url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as e:
            error_type = (
                "rate_limit"
                if e.response.status_code == HTTPStatus.TOO_MANY_REQUESTS
                else "error"
            )
            _raise_service_error(
                error_type,
                {
                    "http_code": e.response.status_code,
                    "body": e.response.text[:ERROR_BODY_MAX_CHARS],
                },
                e,
            )
        except httpx.TimeoutException as e:
            _raise_service_error("timeout", {"reason": str(e)}, e)
        except httpx.TransportError as e:
            _raise_service_error("unavailable", {"reason": str(e)}, e)
        except ValueError as e:
            _raise_service_error("error", {"reason": f"Invalid JSON: {e}"}, e)

        if not isinstance(body, dict):
            raise ExternalServiceError(
                SERVICE_NAME, "error", details={"reason": "Response is not a JSON object"}
            )
        try:
            result = parse_analysis_response(body)
        except (PydanticValidationError, TypeError, ValueError) as e:
            _raise_service_error("error", {"reason": f"Malformed response: {e}"}, e)

        logger.debug(
            "Assisted analysis returned %d fields",
            len(result.fields),
            extra={"document_path": document_path, "service": SERVICE_NAME},
        )
        return result
