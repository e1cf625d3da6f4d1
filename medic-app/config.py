# medic-app/config.py

import json
import os

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name, default=False):
    """Reads a boolean flag from the environment ('1', 'true', 'yes', 'on')."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _load_abi(abi_path):
    """Loads the contract ABI from a truffle build artifact (or a bare ABI list)."""
    if not abi_path or not os.path.exists(abi_path):
        return None
    with open(abi_path, "r") as f:
        artifact = json.load(f)
    if isinstance(artifact, list):
        return artifact
    return artifact.get("abi")


class Config:
    # --- Flask ---
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    # Accepts a bare account at /login instead of a private key. Local development only.
    ALLOW_DEV_LOGIN = _env_flag("ALLOW_DEV_LOGIN")

    # --- Ledger ---
    LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "memory")  # "memory" or "contract"
    BLOCKCHAIN_NODE_URI = os.getenv("BLOCKCHAIN_NODE_URI")
    CONTRACT_ADDRESS = os.getenv("CONTRACT_ADDRESS")
    CONTRACT_ABI_PATH = os.getenv("CONTRACT_ABI_PATH", "contracts/HealthcareRecords.json")
    CONTRACT_ABI = _load_abi(CONTRACT_ABI_PATH)
    TX_RECEIPT_TIMEOUT = int(os.getenv("TX_RECEIPT_TIMEOUT", "180"))
    # Replayed on start in contract mode; the contract itself keeps no replayable history
    LEDGER_JOURNAL_PATH = os.getenv("LEDGER_JOURNAL_PATH", "instance/ledger-journal.jsonl")

    # Signs ledger transactions; its address is the owner unless OWNER_ADDRESS is set
    SERVER_ACCOUNT_PRIVATE_KEY = os.getenv("SERVER_ACCOUNT_PRIVATE_KEY") or os.getenv("DEPLOYER_PRIVATE_KEY")
    OWNER_ADDRESS = os.getenv("OWNER_ADDRESS")

    # --- Access policy ---
    OWNER_CAN_WRITE_WITHOUT_CONSENT = _env_flag("OWNER_CAN_WRITE_WITHOUT_CONSENT", default=True)

    # --- Pinata / IPFS ---
    PINATA_API_KEY = os.getenv("PINATA_API_KEY")
    PINATA_SECRET_API_KEY = os.getenv("PINATA_SECRET_API_KEY")
    PINATA_JWT = os.getenv("PINATA_JWT")
    PINATA_API_URL = os.getenv("PINATA_API_URL", "https://api.pinata.cloud/pinning/pinFileToIPFS")
    IPFS_GATEWAY_URL = os.getenv("IPFS_GATEWAY_URL", "https://gateway.pinata.cloud")
    UPLOAD_TIMEOUT = int(os.getenv("UPLOAD_TIMEOUT", "120"))
