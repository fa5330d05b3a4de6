"""
Command line interface.

    bgzap remove photo.jpg -o cutout.png [--method local|remote]
    bgzap token set [TOKEN]
    bgzap token clear
    bgzap token status

When the remote method is used without a stored API token, the token is
requested interactively and saved before processing starts.
"""

import argparse
import asyncio
import getpass
import sys
from pathlib import Path
from typing import Optional

import httpx

from bgzap.core.config import settings
from bgzap.core.logging import setup_logging
from bgzap.core.storage import LocalStorage
from bgzap.modules.credentials.store import CredentialStore, close_credential_store, get_credential_store
from bgzap.modules.processing.models import ProcessingMethod, ProcessingRequest, ProcessingResult

TOKEN_PROMPT = (
    "Please enter your Replicate API token.\n"
    "Get one at: https://replicate.com/account/api-tokens\n"
    "Token: "
)


async def acquire_token(store: CredentialStore) -> Optional[str]:
    """Return the stored token, prompting for one and saving it if absent."""
    token = await store.get()
    if token:
        return token
    if not sys.stdin.isatty():
        return None
    entered = getpass.getpass(TOKEN_PROMPT).strip()
    if not entered:
        return None
    await store.set(entered)
    return entered


def save_output(result: ProcessingResult, storage, output_path: Path):
    """Write the processed image referenced by result.image_ref to disk."""
    local_path = storage.resolve_url(result.image_ref) if isinstance(storage, LocalStorage) else None
    if local_path is not None:
        data = local_path.read_bytes()
    else:
        response = httpx.get(result.image_ref, follow_redirects=True, timeout=settings.HTTP_TIMEOUT_SECONDS)
        response.raise_for_status()
        data = response.content
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(data)


async def _remove(image_bytes: bytes, method: ProcessingMethod, filename: str):
    # Imported here so token commands never load the engines
    from bgzap.api.dependencies import build_orchestrator

    orchestrator = await build_orchestrator()
    try:
        if method == ProcessingMethod.REMOTE and not await acquire_token(orchestrator.credential_store):
            print("API token required: Replicate API token is needed for cloud processing.", file=sys.stderr)
            return None, orchestrator.storage
        result = await orchestrator.process(
            ProcessingRequest(image_bytes=image_bytes, method=method, filename=filename)
        )
    finally:
        await orchestrator.aclose()
        await orchestrator.prediction_client.aclose()
        await close_credential_store()
    return result, orchestrator.storage


def cmd_remove(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Input file not found: {input_path}", file=sys.stderr)
        return 2

    method = ProcessingMethod(args.method)
    result, storage = asyncio.run(_remove(input_path.read_bytes(), method, input_path.name))
    if result is None:
        return 1
    if result.error is not None:
        print(f"Processing failed: {result.error.message}", file=sys.stderr)
        return 1

    output_path = Path(args.output)
    save_output(result, storage, output_path)
    print(f"Background removed ({method.value}, {result.duration_ms} ms): {output_path}")
    return 0


async def _token(action: str, token: Optional[str]) -> int:
    store = await get_credential_store()
    try:
        if action == "set":
            try:
                await store.set(token or getpass.getpass("Token: "))
            except ValueError as e:
                print(str(e), file=sys.stderr)
                return 1
            print("API token stored.")
        elif action == "clear":
            await store.clear()
            print("API token cleared. You'll be prompted for a new token when using the remote method.")
        else:
            print("API token is set." if await store.has_credential() else "No API token stored.")
    finally:
        await close_credential_store()
    return 0


def cmd_token(args: argparse.Namespace) -> int:
    return asyncio.run(_token(args.action, args.token))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bgzap",
        description="Remove image backgrounds locally or with the Replicate API"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    remove = subparsers.add_parser("remove", help="Remove the background from an image")
    remove.add_argument("input", help="Path to the input image")
    remove.add_argument("-o", "--output", required=True, help="Path to write the PNG cutout")
    remove.add_argument(
        "--method",
        default=settings.DEFAULT_PROCESSING_METHOD,
        choices=[m.value for m in ProcessingMethod],
        help="Processing backend"
    )
    remove.set_defaults(func=cmd_remove)

    token = subparsers.add_parser("token", help="Manage the stored API token")
    token.add_argument("action", choices=["set", "clear", "status"])
    token.add_argument("token", nargs="?", help="Token value for 'set' (prompted if omitted)")
    token.set_defaults(func=cmd_token)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(log_level=settings.LOG_LEVEL, json_format=settings.LOG_FORMAT_JSON)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
