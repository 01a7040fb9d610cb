"""
Vapi API Adapter - Abstracts Vapi HTTP calls for easier testing

This adapter separates the Vapi API calls from business logic,
making the code more testable by allowing easy mocking of the adapter
instead of the HTTP layer.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger("vapi-adapter")


@dataclass
class VapiCallRequest:
    """Request to start an outbound phone call"""
    assistant_id: str
    phone_number_id: str
    customer_number: str
    customer_name: str
    variable_values: Dict[str, str]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "assistantId": self.assistant_id,
            "phoneNumberId": self.phone_number_id,
            "customer": {
                "number": self.customer_number,
                "name": self.customer_name,
            },
            "assistantOverrides": {
                "variableValues": dict(self.variable_values),
            },
            "metadata": dict(self.metadata),
        }


class VapiApiError(Exception):
    """Vapi rejected the request or could not be reached"""

    def __init__(self, message: str, status_code: Optional[int] = None, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.data = data or {}


class VapiAdapter(ABC):
    """Abstract interface for Vapi operations"""

    @abstractmethod
    async def create_call(self, request: VapiCallRequest) -> Dict[str, Any]:
        """Start a call and return the provider's call object"""
        pass


class RealVapiAdapter(VapiAdapter):
    """Real implementation using the Vapi REST API"""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.vapi.ai",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def create_call(self, request: VapiCallRequest) -> Dict[str, Any]:
        """POST /call"""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(f"{self.base_url}/call", json=request.to_payload(), headers=headers)
            except httpx.HTTPError as e:
                raise VapiApiError(f"Vapi request error: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text}
        if not isinstance(data, dict):
            data = {"raw": data}

        if response.status_code >= 400:
            message = data.get("message") or data.get("error") or "VAPI call failed"
            if isinstance(message, list):
                message = "; ".join(str(item) for item in message)
            logger.error(f"Vapi call failed ({response.status_code}): {data}")
            raise VapiApiError(str(message), status_code=response.status_code, data=data)

        logger.info(f"Vapi call initiated: {data.get('id')} -> {request.customer_name} ({request.customer_number})")
        return data


class MockVapiAdapter(VapiAdapter):
    """Mock implementation for testing"""

    def __init__(self):
        self.calls_created = []
        self.should_fail = False
        self.failure_error = None
        self.failure_status_code = None
        self.delay_seconds = 0.0

    async def create_call(self, request: VapiCallRequest) -> Dict[str, Any]:
        """Mock call creation"""
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        if self.should_fail:
            raise VapiApiError(
                self.failure_error or "Mock Vapi failure",
                status_code=self.failure_status_code
            )

        call_id = f"mock-call-{len(self.calls_created) + 1}"
        self.calls_created.append({
            'id': call_id,
            'payload': request.to_payload()
        })
        return {"id": call_id, "status": "queued"}

    def reset(self):
        """Reset mock state"""
        self.calls_created.clear()
        self.should_fail = False
        self.failure_error = None
        self.failure_status_code = None
        self.delay_seconds = 0.0


def create_vapi_adapter(settings, mock: bool = False) -> VapiAdapter:
    """Factory function to create Vapi adapter"""
    if mock:
        return MockVapiAdapter()
    return RealVapiAdapter(
        api_key=settings.vapi_api_key or "",
        base_url=settings.vapi_base_url,
        timeout=settings.external_call_timeout_seconds
    )
