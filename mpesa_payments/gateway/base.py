from abc import ABC, abstractmethod
from typing import Dict, Any


class BaseGateway(ABC):
    """Abstract base for push-to-phone payment gateways."""

    @abstractmethod
    async def stk_push(
        self,
        phone_number: str,
        amount: float,
        account_reference: str,
        transaction_desc: str,
    ) -> Dict[str, Any]:
        """
        Ask the provider to prompt phone_number for amount.
        Returns the provider's acceptance body (carries the CheckoutRequestID).
        """
        pass

    @abstractmethod
    async def query(self, checkout_request_id: str) -> Dict[str, Any]:
        """
        Query the provider for the current result of a previously pushed payment.
        Returns the provider's raw response dict.
        """
        pass
