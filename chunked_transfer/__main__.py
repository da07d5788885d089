"""
Entry point for the chunked_transfer component.
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from .application.domain import ClosedFile
from .application.exceptions import TransferError, ValidationError
from .application.service import TransferService
from .infrastructure.containers import Container

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class RunContext:
    """Process-level context captured once at startup."""

    base_dir: Path

    def resolve(self, path: str) -> Path:
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.base_dir / candidate


def setup_logging(level: str):
    """Applies basic logging configuration."""
    logging.basicConfig(level=level)


async def upload_command(
    service: TransferService, args: argparse.Namespace, context: RunContext
):
    source = context.resolve(args.path)
    if not source.is_file():
        raise ValidationError(f"Upload source {source} is not a readable file")

    with logging_redirect_tqdm(), tqdm(
        total=source.stat().st_size, unit="B", unit_scale=True, desc=source.name
    ) as progress_bar, open(source, "rb") as stream:
        file = await service.create_file(
            args.container, args.name or source.name, args.media_type
        )
        await service.upload_stream(file, stream, progress=progress_bar.update)

    if not args.no_close:
        await service.close_and_wait(file)
    print(file.id)


async def close_command(
    service: TransferService, args: argparse.Namespace, context: RunContext
):
    handle = await service.open_file(args.object_id, args.container)
    closed = await service.close_and_wait(handle)
    logger.info(f"{closed.id} is closed ({closed.size} bytes).")


async def download_command(
    service: TransferService, args: argparse.Namespace, context: RunContext
):
    handle = await service.open_file(args.object_id, args.container)

    if args.output is None:
        await service.download_to(handle, sys.stdout.buffer)
        return

    destination = context.resolve(args.output)
    total = handle.size if isinstance(handle, ClosedFile) else None
    with logging_redirect_tqdm(), tqdm(
        total=total, unit="B", unit_scale=True, desc=destination.name
    ) as progress_bar:
        await service.download_to_path(
            handle, destination, progress=progress_bar.update
        )


async def run_application(args: argparse.Namespace, context: RunContext):
    """Wires and runs the application using the DI container."""

    container = Container()
    container.cli_args.from_dict(
        {"chunk_size": args.chunk_size, "concurrency": args.concurrency}
    )
    setup_logging(level=container.config().logging.level)

    try:
        service = container.transfer_service()
        await args.handler(service, args, context)
    except TransferError as e:
        logger.error(f"A transfer error occurred: {e}")
        sys.exit(1)
    finally:
        await container.http_client().aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chunked file object transfer")
    parser.add_argument(
        "--chunk-size",
        type=int,
        help="Part size in bytes, overriding the configured chunk size.",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Maximum number of parts or ranges transferred at once.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    upload = commands.add_parser("upload", help="Upload a local file.")
    upload.add_argument("path", help="The local file to upload.")
    upload.add_argument("--container", required=True, help="Owning container id.")
    upload.add_argument("--name", help="Object name (defaults to the file name).")
    upload.add_argument("--media-type", help="Media type, e.g. application/json.")
    upload.add_argument(
        "--no-close",
        action="store_true",
        help="Leave the object open after uploading.",
    )
    upload.set_defaults(handler=upload_command)

    close = commands.add_parser("close", help="Close an open file object.")
    close.add_argument("object_id")
    close.add_argument("--container", required=True, help="Owning container id.")
    close.set_defaults(handler=close_command)

    download = commands.add_parser("download", help="Download a closed object.")
    download.add_argument("object_id")
    download.add_argument("--container", required=True, help="Owning container id.")
    download.add_argument(
        "-o", "--output", help="Destination file; stdout when omitted."
    )
    download.set_defaults(handler=download_command)

    return parser


def main(argv: Optional[List[str]] = None):
    context = RunContext(base_dir=Path.cwd())
    cli_args = build_parser().parse_args(argv)
    asyncio.run(run_application(cli_args, context))


if __name__ == "__main__":
    main()
