from __future__ import annotations

from typing import Mapping, Protocol

from .models import CustomerInfo, Offering, Package


class BillingProvider(Protocol):
    """
    Call surface of the external billing SDK.

    Adapters raise ProviderError with the SDK's error code on failure
    (1 = cancelled, 2 = network, 3 = not allowed). Any other exception is
    treated as an unclassified failure.
    """

    async def configure(self, api_key: str) -> None: ...

    async def purchase_package(self, package: Package) -> CustomerInfo: ...

    async def restore_purchases(self) -> CustomerInfo: ...

    async def get_customer_info(self) -> CustomerInfo: ...

    async def get_offerings(self) -> Mapping[str, Offering]: ...

    async def log_in(self, user_id: str) -> None: ...

    async def log_out(self) -> None: ...
