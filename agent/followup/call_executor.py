"""
Voice-Call Gateway - Places outbound calls through Vapi for scheduled follow-ups
"""
import logging
from typing import Any, Dict, Optional

from config.settings import Settings
from shared.errors import ConfigurationError
from .vapi_adapter import VapiAdapter, VapiApiError, VapiCallRequest, create_vapi_adapter
from .call_business_logic import (
    CallResult, build_variable_values, create_failure_result, create_success_result,
    missing_settings_error, missing_settings_hint, normalize_phone
)

logger = logging.getLogger("call-executor")


class VoiceCallGateway:
    """
    Originates outbound calls via the Vapi API

    Uses dependency injection for the Vapi adapter to improve testability.
    Business logic is separated into pure functions.
    """

    def __init__(self, settings: Settings, adapter: Optional[VapiAdapter] = None):
        """
        Initialize the gateway

        Args:
            settings: Provider configuration
            adapter: Vapi adapter for API calls (defaults to the real adapter)
        """
        self.settings = settings
        self.adapter = adapter or create_vapi_adapter(settings)

    def check_configuration(self):
        """
        Raises:
            ConfigurationError: Naming every missing Vapi setting
        """
        missing = self.settings.missing_vapi_settings()
        if missing:
            raise ConfigurationError(missing_settings_error(missing), hint=missing_settings_hint(missing))

    async def originate_call(
        self,
        phone: str,
        name: str,
        variants: Dict[str, str],
        metadata: Optional[Dict[str, Any]] = None
    ) -> CallResult:
        """
        Place one outbound call

        Args:
            phone: Patient phone number (normalized before submission)
            name: Patient name the assistant greets
            variants: Localized message variants by language
            metadata: Opaque data echoed back in provider webhooks

        Returns:
            CallResult; provider rejections are failures, never exceptions

        Raises:
            ValidationError: Empty phone number
            ConfigurationError: Missing Vapi credentials or ids
        """
        number = normalize_phone(phone, self.settings.default_country_code)
        self.check_configuration()

        request = VapiCallRequest(
            assistant_id=self.settings.vapi_assistant_id,
            phone_number_id=self.settings.vapi_phone_number_id,
            customer_number=number,
            customer_name=name or "Patient",
            variable_values=build_variable_values(variants, self.settings.languages, self.settings.source_language),
            metadata=metadata or {},
        )

        try:
            logger.info(f"Calling {request.customer_name} at {number}")
            provider_call = await self.adapter.create_call(request)
        except VapiApiError as e:
            logger.error(f"Vapi rejected call to {number}: {e.message}")
            return create_failure_result(e.message, raw=e.data)

        result = create_success_result(provider_call)
        if not result.provider_call_id:
            return create_failure_result("Vapi response did not include a call id", raw=provider_call)
        return result
