"""One-shot lab provisioning with an in-flight guard."""

from __future__ import annotations

import logging

from lablaunch.client import LabApiClient
from lablaunch.errors import PreconditionError
from lablaunch.models import ProvisionRequest, ProvisionResult

logger = logging.getLogger(__name__)


class ProvisionInitiator:
    """Sends launch requests, refusing to start a second one while the first is pending."""

    def __init__(self, client: LabApiClient) -> None:
        self.client = client
        self.loading = False

    async def launch(self, request: ProvisionRequest) -> ProvisionResult:
        if self.loading:
            logger.debug("Ignoring launch into %s: previous launch still pending", request.resource_group)
            raise PreconditionError("A launch is already in progress")

        self.loading = True
        try:
            return await self.client.launch(request)
        finally:
            self.loading = False
