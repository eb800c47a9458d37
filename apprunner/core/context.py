"""Runner context: the shared objects of one runner process.

The trusted key store and the application registry are process-wide by
nature; they are owned here and injected into the trust pipeline and the
reconciler instead of living in module globals, so every test can build an
isolated context.
"""

from __future__ import annotations

import logging
from typing import TextIO

import httpx

from apprunner import __version__
from apprunner.config import RunnerConfig
from apprunner.core.downloader import Downloader
from apprunner.core.registry import SupervisorRegistry
from apprunner.core.supervisor import RunSupervisor
from apprunner.trust.keystore import KeyStore
from apprunner.trust.pipeline import TrustPipeline

logger = logging.getLogger(__name__)


def build_http_client(config: RunnerConfig) -> httpx.Client:
    """HTTP client shared by manifest, key and artifact fetches."""
    return httpx.Client(
        timeout=config.request_timeout,
        follow_redirects=True,
        headers={"User-Agent": f"apprunner/{__version__}"},
    )


class RunnerContext:
    """Wires config, HTTP client, key store, trust pipeline and registry.

    Parameters
    ----------
    config:
        Runner configuration.
    client:
        Optional HTTP client (tests pass one backed by
        ``httpx.MockTransport``).  A client created here is closed by
        ``close()``; a caller-supplied one is not.
    output:
        Stream for supervised processes' prefixed output.
    """

    def __init__(
        self,
        config: RunnerConfig,
        client: httpx.Client | None = None,
        output: TextIO | None = None,
    ) -> None:
        self.config = config
        self._owns_client = client is None
        self.client = client if client is not None else build_http_client(config)
        self._output = output

        self.keystore = KeyStore(self.client, api_base=config.key_api_base)
        self.pipeline = TrustPipeline(
            self.keystore,
            identity=config.github_user,
            trusted_host=config.trusted_host,
        )
        self.downloader = Downloader(self.client, staging_dir=config.staging_dir)
        self.registry = SupervisorRegistry(self._new_supervisor)

    def _new_supervisor(self, app_name: str) -> RunSupervisor:
        return RunSupervisor(
            app_name,
            self.downloader,
            health_check_interval=self.config.health_check_interval,
            grace_period=self.config.grace_period,
            output=self._output,
        )

    def close(self) -> None:
        """Stop all supervisors, then release the HTTP client."""
        self.registry.shutdown_all()
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> RunnerContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
