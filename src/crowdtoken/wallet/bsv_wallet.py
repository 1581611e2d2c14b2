"""Backend BSV wallet initialization for the crowdfunding service."""
import os
import logging

from bsv.keys import PrivateKey
from bsv.wallet import KeyDeriver
from sqlalchemy import create_engine

from bsv_wallet_toolbox import Wallet
from bsv_wallet_toolbox.services import Services, create_default_options
from bsv_wallet_toolbox.storage import StorageProvider

from crowdtoken import config
from crowdtoken.wallet.client import WalletClient

logger = logging.getLogger(__name__)

# Module-level singleton
_wallet: Wallet | None = None
_identity_key_hex: str | None = None


def init_wallet() -> tuple[WalletClient, str]:
    """
    Initialize the backend wallet from PRIVATE_KEY (hex).
    Returns (wallet_client, identity_key_hex).
    Called once at startup.
    """
    global _wallet, _identity_key_hex

    private_key_hex = os.environ.get("PRIVATE_KEY")
    if not private_key_hex:
        raise RuntimeError("PRIVATE_KEY not set. Generate a backend key before starting the service.")

    chain = config.NETWORK
    private_key = PrivateKey.from_hex(private_key_hex)
    _identity_key_hex = private_key.public_key().hex()

    key_deriver = KeyDeriver(root_private_key=private_key)
    options = create_default_options(chain)
    services = Services(options)

    engine = create_engine(f"sqlite:///{config.BSV_WALLET_DB}")
    storage = StorageProvider(
        engine=engine,
        chain=chain,
        storage_identity_key=_identity_key_hex,
    )
    storage.make_available()
    storage.set_services(services)

    _wallet = Wallet(
        chain=chain,
        services=services,
        key_deriver=key_deriver,
        storage_provider=storage,
    )
    logger.info(f"Backend wallet initialized: {_identity_key_hex}")

    return WalletClient(_wallet), _identity_key_hex


def get_wallet() -> WalletClient:
    """Get the initialized wallet. Raises if not initialized."""
    if _wallet is None:
        raise RuntimeError("BSV wallet not initialized. Call init_wallet() first.")
    return WalletClient(_wallet)


def get_identity_key() -> str:
    """Get the backend identity key hex. Raises if not initialized."""
    if _identity_key_hex is None:
        raise RuntimeError("BSV wallet not initialized. Call init_wallet() first.")
    return _identity_key_hex
