"""Payment gateway provider adapters."""

from licensing_engine.gateway.base import GatewayStatus, PaymentGatewayProvider
from licensing_engine.gateway.stub import StubGatewayProvider

__all__ = ["GatewayStatus", "PaymentGatewayProvider", "StubGatewayProvider"]
