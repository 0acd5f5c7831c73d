"""Bearer tokens for uploading profiles to the collector."""

from __future__ import annotations

import logging
from typing import Protocol

from powertool_operator.core.config import Settings, get_settings
from powertool_operator.services.cluster import ClusterService, get_cluster_service
from powertool_operator.services.container_env import compute_token_duration

logger = logging.getLogger(__name__)


class TokenIssuer(Protocol):
    """Issues opaque bearer tokens for collector uploads."""

    def issue(self, job_name: str, collection_seconds: float) -> str:
        """Return a token valid for at least the collection plus upload buffer."""
        ...


class ServiceAccountTokenIssuer:
    """Issues tokens for the collector's service account via TokenRequest.

    The token's audience is the collector, which validates it with a
    TokenReview. Lifetimes are clamped to the API's ten-minute minimum.
    """

    def __init__(
        self,
        cluster: ClusterService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._cluster = cluster

    @property
    def cluster(self) -> ClusterService:
        """Get the ClusterService, using global instance if not set."""
        if self._cluster is None:
            self._cluster = get_cluster_service()
        return self._cluster

    def issue(self, job_name: str, collection_seconds: float) -> str:
        expiration = compute_token_duration(
            collection_seconds,
            buffer_seconds=self.settings.token_buffer_seconds,
            minimum_seconds=self.settings.token_min_duration_seconds,
        )
        token = self.cluster.create_service_account_token(
            namespace=self.settings.system_namespace,
            service_account=self.settings.collector_service_account,
            audience=self.settings.collector_audience,
            expiration_seconds=expiration,
        )
        logger.info("Issued collector token for job %s (expires in %ss)", job_name, expiration)
        return token
