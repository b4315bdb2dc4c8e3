"""
HorizontalPodAutoscaler discovery.

Periodically lists HPAs across all namespaces and hands their metric
declarations to the collector scheduler.
"""

import asyncio
from typing import Any

from config.settings import KubernetesSettings
from kubernetes import client, config
from src.collectors.annotations import parse_hpa
from src.collectors.types import MetricDeclaration
from src.utils.logging import get_logger

from .scheduler import CollectorScheduler

logger = get_logger(__name__)


class HPADiscovery:
    """
    Feeds the scheduler from the Kubernetes API.

    Can connect via:
    - In-cluster config (when running inside K8s)
    - Kubeconfig file (when running locally)

    A failed listing leaves the previously synced declarations in place
    and is retried on the next interval.
    """

    def __init__(
        self,
        scheduler: CollectorScheduler,
        settings: KubernetesSettings,
        autoscaling_api: Any = None,
    ) -> None:
        self._scheduler = scheduler
        self.in_cluster = settings.in_cluster
        self.kubeconfig_path = settings.config_path
        self.interval = settings.discovery_interval

        self._autoscaling_api = autoscaling_api
        self._running = False
        self._task: asyncio.Task | None = None
        self._last_error: str | None = None
        self._syncs_total = 0

    def _init_client(self) -> None:
        """Initialize Kubernetes client."""
        if self._autoscaling_api is not None:
            return

        if self.in_cluster:
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes config")
        else:
            config.load_kube_config(config_file=self.kubeconfig_path)
            logger.info("Loaded kubeconfig", path=self.kubeconfig_path or "~/.kube/config")

        self._autoscaling_api = client.AutoscalingV2Api()

    def _list_declarations(self) -> list[MetricDeclaration]:
        self._init_client()
        hpas = self._autoscaling_api.list_horizontal_pod_autoscaler_for_all_namespaces()
        declarations = []
        for hpa in hpas.items:
            declarations.extend(parse_hpa(hpa))
        return declarations

    async def refresh(self) -> int:
        """
        List HPAs once and sync the scheduler.

        Returns:
            Number of declarations rejected by the registry
        """
        declarations = await asyncio.to_thread(self._list_declarations)
        errors = self._scheduler.sync(declarations)
        self._syncs_total += 1
        self._last_error = None
        logger.debug(
            "HPA discovery synced",
            declarations=len(declarations),
            rejected=len(errors),
        )
        return len(errors)

    async def _discovery_loop(self) -> None:
        logger.info("HPA discovery started", interval=self.interval)

        while self._running:
            try:
                await self.refresh()
            except Exception as e:
                self._last_error = str(e)
                logger.error("HPA discovery failed", error=str(e))

            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        if self._running:
            logger.warning("HPA discovery already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._discovery_loop())

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("HPA discovery stopped")

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "interval": self.interval,
            "syncs_total": self._syncs_total,
            "last_error": self._last_error,
        }
