"""
Dependency Injection container for the chunked_transfer component.

This container uses the `dependency-injector` library to wire together all
the components of the application, such as the transfer service and its
infrastructure adapters, based on the application's configuration.
"""

from dependency_injector import containers, providers
import httpx

from ..application.configuration import TransferConfiguration
from ..application.domain import DataTransport, Hasher, RemoteObjectClient
from ..application.service import TransferService
from ..settings import settings

from .api_client import HttpObjectClient
from .checksums import Md5Hasher
from .transport import HttpDataTransport


class Container(containers.DeclarativeContainer):
    """DI container for wiring the application components."""

    cli_args = providers.Configuration()

    config = providers.Object(settings)

    transfer_config = providers.Singleton(
        TransferConfiguration.from_settings,
        config.provided.transfer,
        chunk_size=cli_args.chunk_size,
        max_concurrency=cli_args.concurrency,
    )

    http_client = providers.Singleton(httpx.AsyncClient)

    object_client: providers.Factory[RemoteObjectClient] = providers.Factory(
        HttpObjectClient,
        client=http_client,
        token=config.provided.api.token,
        base_url=config.provided.api.base_url,
        timeout=transfer_config.provided.request_timeout,
        retry_policy=transfer_config.provided.retry,
    )

    transport: providers.Factory[DataTransport] = providers.Factory(
        HttpDataTransport,
        client=http_client,
        timeout=transfer_config.provided.request_timeout,
    )

    hasher: providers.Factory[Hasher] = providers.Factory(Md5Hasher)

    transfer_service = providers.Factory(
        TransferService,
        client=object_client,
        transport=transport,
        hasher=hasher,
        config=transfer_config,
    )
