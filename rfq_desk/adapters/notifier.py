import httpx
from uuid import uuid4
from typing import Dict, Any, Optional
import json

from rfq_desk.models import RFQTransition
from rfq_desk.service.ports import AbstractNotifier
from shared.logging import get_logger

logger = get_logger(__name__)

TRANSITION_METHOD = "RFQTransitioned"


class LoggingNotifier(AbstractNotifier):
    """Default notifier when no webhook is configured: records the transition in the log."""

    async def rfq_transitioned(self, transition: RFQTransition) -> None:
        logger.info(
            f"RFQ {transition.rfqNumber} ({transition.rfqId}) moved "
            f"{transition.fromStatus.value} -> {transition.toStatus.value} at {transition.occurredAt.isoformat()}"
        )


class WebhookNotifier(AbstractNotifier):
    """
    Announces RFQ transitions to a webhook as JSON-RPC 2.0 calls.
    """

    def __init__(self, url: str, token: str | None = None, timeout: float = 10.0):
        """
        Args:
            url: The webhook endpoint receiving transition events.
            token: Optional bearer token sent with every call.
            timeout: Per-request timeout in seconds.
        """
        self.url = url
        self.token = token
        self.timeout = timeout

    def _auth_hdr(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    async def rfq_transitioned(self, transition: RFQTransition) -> Dict[str, Any]:
        return await self.post(action=TRANSITION_METHOD, params=transition.model_dump(mode='json'))

    async def post(self, action: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Sends one JSON-RPC 2.0 request to the webhook.

        Returns:
            The "result" field of the response, or the whole envelope when the
            receiver answered with a JSON-RPC error.

        Raises:
            ValueError: If the response is not valid JSON-RPC 2.0.
            httpx.HTTPStatusError: For an unsuccessful HTTP status that is not a JSON-RPC error.
            httpx.RequestError: For network errors and timeouts.
        """
        request_id = str(uuid4())
        envelope = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": action,
            "params": params,
        }

        headers = self._auth_hdr()
        headers["Content-Type"] = "application/json"

        logger.info(f"Sending JSON-RPC request ID {request_id} to {self.url}, method: {action}")
        logger.debug(f"Request body: {envelope}")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(self.url, json=envelope, headers=headers)

                response_data: Optional[Dict[str, Any]] = None

                if not response.is_success:
                    # A JSON-RPC error body is acceptable with a non-2xx status; anything else is an HTTP failure.
                    content_type = response.headers.get("Content-Type", "")
                    if "application/json" not in content_type.lower():
                        logger.error(f"HTTP error {response.status_code} from {self.url} (Content-Type: {content_type}): {response.text}")
                        response.raise_for_status()

                    try:
                        potential_error_data = response.json()
                    except json.JSONDecodeError:
                        logger.error(f"HTTP error {response.status_code} from {self.url} with malformed JSON body: {response.text}")
                        response.raise_for_status()
                    if potential_error_data.get("jsonrpc") == "2.0" and "error" in potential_error_data:
                        response_data = potential_error_data
                        logger.warning(f"Received JSON-RPC error with HTTP status {response.status_code} from {self.url}")
                    else:
                        logger.error(f"HTTP error {response.status_code} from {self.url} (JSON, but not JSON-RPC error): {response.text}")
                        response.raise_for_status()
                else:
                    response_data = response.json()

                logger.debug(f"Response data for JSON-RPC ID {request_id}: {response_data}")

                if response_data.get("jsonrpc") != "2.0":
                    raise ValueError("Invalid JSON-RPC version in response")

                if "id" in response_data and response_data["id"] != request_id:
                    logger.warning(f"Mismatched ID in JSON-RPC response. Expected {request_id}, got {response_data.get('id')}")

                if "error" in response_data:
                    logger.warning(f"Webhook rejected {action}: {response_data['error']}")
                    return response_data

                if "result" in response_data:
                    return response_data["result"]
                raise ValueError("Invalid JSON-RPC response: missing 'result' or 'error' field")

            except httpx.HTTPStatusError as e:
                logger.error(f"HTTPStatusError during webhook call to {self.url}: {e.response.status_code}")
                raise
            except json.JSONDecodeError as e:
                logger.error(f"Failed to decode JSON from 2xx response from {self.url}: {e}")
                raise ValueError(f"Successful response from {self.url} was not valid JSON: {e}") from e
            except httpx.RequestError as e:
                logger.error(f"RequestError during webhook call to {self.url}: {e}")
                raise


def build_notifier(url: str | None, token: str | None = None) -> AbstractNotifier:
    if url:
        return WebhookNotifier(url=url, token=token)
    return LoggingNotifier()
