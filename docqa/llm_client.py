"""OpenAI-compatible API client wrapper with error handling."""
import httpx
from typing import Any, List, Dict, Optional, Union
import structlog

from docqa.config import ProviderConfig
from docqa.exceptions import ConfigurationError, ProviderError, ProviderTimeoutError

logger = structlog.get_logger()


class OpenAIClient:
    """Async client for an OpenAI-compatible embeddings/chat API."""

    def __init__(
        self,
        provider_config: ProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            provider_config: API key, model, base URL and timeout to use
            transport: Optional httpx transport (tests plug in a MockTransport)
        """
        self.config = provider_config
        self.base_url = provider_config.base_url.rstrip("/")
        self.timeout = provider_config.timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        if not self.config.api_key:
            raise ConfigurationError(
                "API key is not configured (set OPENAI_API_KEY)",
                {"base_url": self.base_url},
            )
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    async def _post(self, path: str, payload: Dict[str, Any], stage: str) -> Dict:
        # Credentials are checked before any connection is opened
        headers = self._headers()

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers=headers,
                )
                response.raise_for_status()
                return response.json()

        except httpx.TimeoutException as e:
            logger.error(
                "provider_timeout",
                stage=stage,
                timeout=self.timeout,
                error=str(e),
            )
            raise ProviderTimeoutError(
                f"{stage} request timed out after {self.timeout}s", stage=stage
            ) from e
        except httpx.HTTPStatusError as e:
            detail = _error_detail(e.response)
            logger.error(
                "provider_http_error",
                stage=stage,
                status_code=e.response.status_code,
                error=detail,
            )
            raise ProviderError(
                f"{stage} request failed: {e.response.status_code} - {detail}",
                stage=stage,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("provider_connection_error", stage=stage, error=str(e))
            raise ProviderError(f"{stage} request failed: {e}", stage=stage) from e
        except ValueError as e:
            logger.error("provider_invalid_response", stage=stage, error=str(e))
            raise ProviderError(
                f"{stage} returned an invalid response body", stage=stage
            ) from e

    async def embeddings(
        self,
        input: Union[str, List[str]],
        model: str = None,
    ) -> Dict:
        """Generate embeddings for one or more texts.

        Args:
            input: Text or list of texts to embed
            model: Model to use (defaults to the configured model)

        Returns:
            Response dict with 'data' list of {'embedding', 'index'}

        Raises:
            ConfigurationError: If no API key is configured
            ProviderTimeoutError: If the request times out
            ProviderError: On API errors
        """
        model = model or self.config.model

        logger.debug(
            "embedding_request",
            model=model,
            input_count=1 if isinstance(input, str) else len(input),
        )

        data = await self._post(
            "/embeddings", {"model": model, "input": input}, stage="embedding"
        )

        logger.debug("embedding_response", model=model, count=len(data.get("data", [])))

        return data

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict:
        """Send chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to the configured model)
            temperature: Sampling temperature (0.0-2.0)
            max_tokens: Upper bound on generated tokens

        Returns:
            Response dict with 'choices'

        Raises:
            ConfigurationError: If no API key is configured
            ProviderTimeoutError: If the request times out
            ProviderError: On API errors
        """
        model = model or self.config.model

        payload = {
            "model": model,
            "messages": messages,
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        logger.info("chat_request", model=model, message_count=len(messages))

        data = await self._post("/chat/completions", payload, stage="generation")

        logger.info("chat_response", model=model, choices=len(data.get("choices", [])))

        return data

    async def list_models(self) -> List[str]:
        """List the model ids the API exposes.

        Raises:
            ConfigurationError: If no API key is configured
            ProviderError: On API errors
        """
        headers = self._headers()
        try:
            async with httpx.AsyncClient(
                timeout=5.0, transport=self._transport
            ) as client:
                response = await client.get(f"{self.base_url}/models", headers=headers)
                response.raise_for_status()
                data = response.json()
                return [m["id"] for m in data.get("data", [])]
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error("list_models_error", error=str(e))
            raise ProviderError(f"Listing models failed: {e}", stage="health") from e


def _error_detail(response: httpx.Response) -> str:
    """Pull the provider's error message out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or "Unknown error"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(error, str):
            return error
    return response.text or "Unknown error"
