"""Unit tests for the command line and container wiring."""

from pathlib import Path
from types import SimpleNamespace

import pytest
from dependency_injector import providers

from chunked_transfer.__main__ import RunContext, build_parser, upload_command
from chunked_transfer.application.exceptions import ConfigurationError, ValidationError
from chunked_transfer.infrastructure.containers import Container


def test_run_context_resolves_relative_paths(tmp_path):
    context = RunContext(base_dir=tmp_path)

    assert context.resolve("data.bin") == tmp_path / "data.bin"
    assert context.resolve("/abs/data.bin") == Path("/abs/data.bin")


def test_parser_reads_upload_arguments():
    args = build_parser().parse_args(
        ["--chunk-size", "1024", "upload", "data.bin", "--container", "project-1",
         "--media-type", "text/plain", "--no-close"]
    )

    assert args.handler is upload_command
    assert args.chunk_size == 1024
    assert args.container == "project-1"
    assert args.media_type == "text/plain"
    assert args.no_close


def test_parser_requires_container():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["download", "file-1"])


def test_container_applies_cli_overrides():
    container = Container()
    container.cli_args.from_dict({"chunk_size": 8, "concurrency": 2})

    config = container.transfer_config()

    assert config.chunk_size == 8
    assert config.max_concurrency == 2
    assert config.retry.max_retries == 3


def test_container_rejects_placeholder_token(monkeypatch):
    monkeypatch.delenv("CHUNKED_TRANSFER_API__TOKEN", raising=False)
    container = Container()
    container.cli_args.from_dict({"chunk_size": None, "concurrency": None})

    with pytest.raises(ConfigurationError):
        container.transfer_service()


def test_metadata_client_uses_request_timeout():
    container = Container()
    container.config.override(
        providers.Object(
            SimpleNamespace(
                api=SimpleNamespace(token="secret-token", base_url="http://api.test"),
                transfer={"request_timeout": 7},
            )
        )
    )
    container.cli_args.from_dict({"chunk_size": None, "concurrency": None})

    client = container.object_client()

    assert client.timeout == 7
    assert container.transport().timeout == 7


async def test_upload_of_missing_path_is_validation_error(service, remote, tmp_path):
    args = build_parser().parse_args(
        ["upload", "missing.bin", "--container", "project-1"]
    )

    with pytest.raises(ValidationError, match="missing.bin"):
        await upload_command(service, args, RunContext(base_dir=tmp_path))

    assert remote.network_calls == 0
