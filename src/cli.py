import argparse
import asyncio
import getpass
import logging
import mimetypes
import signal
import sys
from contextlib import suppress
from pathlib import Path

from dotenv import load_dotenv

from config import ChatlineSettings, get_data_paths, load_settings
from data.duckdb_store import get_duckdb
from errors import ChatlineError
from models import Message, MessageKind
from remote.firebase_client import (
    FirebaseClient,
    FirebaseIdentityProvider,
    FirestoreMessageStore,
    FirestoreProfileStore,
)
from repository import CredentialCache, MessageLogCache
from sync.controller import SessionController, SessionState
from sync.identity import IdentityResolver
from sync.reconciler import StreamReconciler

# Setup logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

load_dotenv()

# Default settings file, relative to the project root
CONFIG_PATH = get_data_paths()["config_file"]


def build_controller(
    settings: ChatlineSettings, client: FirebaseClient
) -> SessionController:
    """Wire the Firebase collaborators and the local DuckDB store together."""
    store = get_duckdb(settings.storage.db_path)
    credentials = CredentialCache(store)
    resolver = IdentityResolver(
        FirebaseIdentityProvider(client),
        FirestoreProfileStore(client, settings.firebase.profiles_collection),
        credentials,
    )
    reconciler = StreamReconciler(
        FirestoreMessageStore(
            client,
            settings.firebase.messages_collection,
            poll_interval=settings.firebase.poll_interval,
        ),
        MessageLogCache(store),
    )
    return SessionController(resolver, reconciler, credentials)


def format_message(message: Message) -> str:
    stamp = message.created_at.strftime("%H:%M") if message.created_at else "--:--"
    if message.kind is MessageKind.IMAGE:
        size = len(message.image_payload or "")
        return f"[{stamp}] {message.author}: <image, {size:,} chars>"
    return f"[{stamp}] {message.author}: {message.body}"


async def tail_messages(controller: SessionController) -> None:
    """Print messages as snapshots arrive until interrupted."""
    seen: set[str] = set()

    def _render(messages: list[Message]) -> None:
        for message in messages:
            if message.id in seen:
                continue
            seen.add(message.id)
            print(format_message(message))  # noqa: T201

    subscription = await controller.subscribe_messages(_render)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    with suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, stop.set)
    try:
        await stop.wait()
    finally:
        subscription.dispose()


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)

    try:
        if args.wipe_local:
            get_duckdb(settings.storage.db_path).clear()
            logger.info("Local credentials and history wiped")
            return 0
        client = FirebaseClient(settings.firebase)
    except (ChatlineError, RuntimeError) as e:
        logger.error(f"Setup failed: {e}")
        return 1

    async with client:
        try:
            controller = build_controller(settings, client)
        except ChatlineError as e:
            logger.error(f"Setup failed: {e}")
            return 1
        try:
            if args.register:
                name = args.name or input("Display name: ")
                secret = getpass.getpass("Password: ")
                intent = await controller.register(args.register, secret, name)
                print(f"Registered and signed in as {intent.display_name}")  # noqa: T201
                return 0

            if args.login:
                secret = getpass.getpass("Password: ")
                intent = await controller.login(args.login, secret)
                print(f"Signed in as {intent.display_name}")  # noqa: T201
                return 0

            intent = await controller.start()
            if args.whoami:
                if controller.state is SessionState.AUTHENTICATED:
                    print(f"Signed in as {intent.display_name}")  # noqa: T201
                else:
                    print("Not signed in")  # noqa: T201
                return 0

            if args.logout:
                if controller.state is SessionState.AUTHENTICATED:
                    await controller.logout()
                else:
                    # stale or revoked credentials: nothing remote to end
                    await controller.forget_credentials()
                print("Signed out")  # noqa: T201
                return 0

            if controller.state is not SessionState.AUTHENTICATED:
                logger.error("Not signed in; run with --login EMAIL first")
                return 1

            if args.send:
                if not await controller.send_text_message(args.send):
                    logger.warning("Nothing to send")
            if args.send_image:
                path = Path(args.send_image)
                mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
                await controller.send_image_message(path.read_bytes(), mime_type)
            if args.tail:
                await tail_messages(controller)
            return 0
        except ChatlineError as e:
            logger.error(f"{type(e).__name__}: {e}")
            return 1
        finally:
            await controller.shutdown()


def main() -> None:
    """Entry point for the chatline terminal client."""
    parser = argparse.ArgumentParser(description="chatline terminal client")
    parser.add_argument("--config", default=str(CONFIG_PATH), help="Path to config.yaml")
    parser.add_argument("--login", metavar="EMAIL", help="Sign in and remember the credentials")
    parser.add_argument("--register", metavar="EMAIL", help="Create an account and sign in")
    parser.add_argument("--name", help="Display name used with --register")
    parser.add_argument("--logout", action="store_true", help="Sign out and forget credentials")
    parser.add_argument("--whoami", action="store_true", help="Show the remembered identity")
    parser.add_argument("--send", metavar="TEXT", help="Send a text message")
    parser.add_argument("--send-image", metavar="PATH", help="Send an image file")
    parser.add_argument("--tail", action="store_true", help="Follow the room until Ctrl-C")
    parser.add_argument(
        "--wipe-local",
        action="store_true",
        help="Delete cached credentials and history (WARNING: forgets the login)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    if not any(
        [
            args.login,
            args.register,
            args.logout,
            args.whoami,
            args.send,
            args.send_image,
            args.tail,
            args.wipe_local,
        ]
    ):
        parser.print_help()
        return

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
