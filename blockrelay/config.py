# -----------------------------------------------------------------------------
# Project: BlockRelay v0.1
# File:    config.py
# (c)      2025-2026 Wolfgang Lohmann
# License: MIT
# -----------------------------------------------------------------------------

# blockrelay/config.py
import os
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv

# Paths are resolved relative to THIS file, not the current working directory.
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / "local_config" / ".env"
OUTPUT_DIR = BASE_DIR / "output"

DEFAULT_EXSAT_RPC_URLS = ["https://chain-tst3.exactsat.io"]

# --- Contract accounts on the destination chain ---
CONTRACT_BLKSYNC = "blksync.xsat"
CONTRACT_UTXOMNG = "utxomng.xsat"
CONTRACT_POOLREG = "poolreg.xsat"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, default))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, default))


def _env_url_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    # Accept a JSON list or a plain comma separated string
    if raw.strip().startswith("["):
        return [str(u) for u in json.loads(raw)]
    return [u.strip() for u in raw.split(",") if u.strip()]


@dataclass
class Config:
    """
    Central configuration of the synchronizer.
    Built once (usually via Config.from_env()) and handed to the engine,
    so no component reads process state on its own.
    """

    # --- Destination chain (exSat) ---
    account: str = ""
    public_key: str = ""
    permission: str = "active"
    exsat_rpc_urls: List[str] = field(default_factory=lambda: list(DEFAULT_EXSAT_RPC_URLS))
    keosd_url: str = "http://127.0.0.1:8900"
    contract_blksync: str = CONTRACT_BLKSYNC
    contract_utxomng: str = CONTRACT_UTXOMNG
    contract_poolreg: str = CONTRACT_POOLREG

    # --- Source chain (Bitcoin RPC) ---
    btc_rpc_urls: List[str] = field(default_factory=list)
    btc_rpc_username: Optional[str] = None
    btc_rpc_password: Optional[str] = None
    btc_start_height: int = 840000
    btc_data_dir: Optional[str] = None

    # --- Upload behaviour ---
    chunk_size: int = 128 * 1024  # bytes of raw block per chunk, not hex characters
    max_chunk_rounds: int = 10
    max_candidate_failures: int = 5
    max_uploaders: int = 4
    miner_verification_delay: float = 6.0
    candidate_delay: float = 1.0
    settle_delay: float = 1.0

    # --- Scheduling (seconds between job ticks) ---
    upload_interval: float = 30.0
    parse_interval: float = 10.0

    # --- Network ---
    timeout_connect: float = 10.0
    btc_rpc_timeout: float = 8.0
    btc_rpc_retries: int = 3
    btc_rpc_retry_delay: float = 1.0
    table_retries: int = 3
    table_retry_delay: float = 0.1
    tx_expiration: int = 60

    log_file: str = str(OUTPUT_DIR / "application.log")
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "Config":
        """
        Loads the .env file (if present) and builds a Config from the environment.
        """
        path = env_path or ENV_PATH
        if path.exists():
            load_dotenv(path)

        return cls(
            account=os.getenv("EXSAT_ACCOUNT", ""),
            public_key=os.getenv("EXSAT_PUBLIC_KEY", ""),
            permission=os.getenv("EXSAT_PERMISSION", "active"),
            exsat_rpc_urls=_env_url_list("EXSAT_RPC_URLS", DEFAULT_EXSAT_RPC_URLS),
            keosd_url=os.getenv("KEOSD_URL", "http://127.0.0.1:8900"),
            btc_rpc_urls=_env_url_list("BTC_RPC_URL", []),
            btc_rpc_username=os.getenv("BTC_RPC_USERNAME") or None,
            btc_rpc_password=os.getenv("BTC_RPC_PASSWORD") or None,
            btc_start_height=_env_int("BTC_START_HEIGHT", 840000),
            btc_data_dir=os.getenv("BTC_DATA_DIR") or None,
            chunk_size=_env_int("CHUNK_SIZE", 128 * 1024),
            max_chunk_rounds=_env_int("MAX_CHUNK_ROUNDS", 10),
            max_candidate_failures=_env_int("MAX_CANDIDATE_FAILURES", 5),
            max_uploaders=_env_int("MAX_UPLOADERS", 4),
            miner_verification_delay=_env_float("MINER_VERIFICATION_DELAY", 6.0),
            candidate_delay=_env_float("CANDIDATE_DELAY", 1.0),
            settle_delay=_env_float("SETTLE_DELAY", 1.0),
            upload_interval=_env_float("JOBS_BLOCK_UPLOAD", 30.0),
            parse_interval=_env_float("JOBS_BLOCK_PARSE", 10.0),
            timeout_connect=_env_float("TIMEOUT_CONNECT", 10.0),
            btc_rpc_timeout=_env_float("BTC_RPC_TIMEOUT", 8.0),
            tx_expiration=_env_int("TX_EXPIRATION", 60),
            log_file=os.getenv("LOG_FILE", str(OUTPUT_DIR / "application.log")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self):
        """Raises ValueError if settings needed for uploading are missing."""
        if not self.account:
            raise ValueError("EXSAT_ACCOUNT missing in .env")
        if not self.public_key:
            raise ValueError("EXSAT_PUBLIC_KEY missing in .env")
        if not self.btc_rpc_urls:
            raise ValueError("BTC_RPC_URL missing in .env")
        if not self.exsat_rpc_urls:
            raise ValueError("EXSAT_RPC_URLS is empty")
        if self.chunk_size <= 0:
            raise ValueError(f"Invalid CHUNK_SIZE {self.chunk_size}. Must be positive.")
