from fastapi import Request

from app.integrations.payment_provider_client import PaymentProviderProtocol


def get_payment_provider_client(request: Request) -> PaymentProviderProtocol:
    """Shared provider client built in the application lifespan."""
    return request.app.state.payment_provider_client
