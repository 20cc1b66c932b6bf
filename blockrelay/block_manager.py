import json
import logging
import os
from typing import Optional

import portalocker
from portalocker import LOCK_EX, LOCK_SH

logger = logging.getLogger(__name__)


class RawBlockCache:
    """
    Manages a local directory of raw Bitcoin blocks, one JSON file per height.
    Each file stores the block hash next to the hex payload, so an entry from
    a reorganized branch is never served for a different hash.
    """

    def __init__(self, directory: str, prefix: str = "mainnet"):
        """
        :param directory: Folder holding the cached blocks.
        :param prefix: File name prefix, e.g. the network name.
        """
        self.directory = directory
        self.prefix = prefix

    def path_for(self, height: int) -> str:
        return os.path.join(self.directory, f"{self.prefix}-{height}.json")

    def load(self, height: int, block_hash: str) -> Optional[bytes]:
        """
        Returns the cached raw block for (height, hash), or None if the file is
        missing, unreadable or belongs to another hash.
        """
        path = self.path_for(height)
        try:
            with open(path, 'r') as f:
                portalocker.lock(f, LOCK_SH)
                entry = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            return None

        if entry.get("hash") != block_hash:
            logger.info(f"Cached block at height {height} belongs to {entry.get('hash')}, not {block_hash}. Ignoring.")
            return None
        try:
            return bytes.fromhex(entry["raw"])
        except (KeyError, ValueError):
            logger.warning(f"Cache file {path} is corrupt. Ignoring.")
            return None

    def save(self, height: int, block_hash: str, raw_block: bytes):
        """
        Saves a raw block to its height file, replacing an older entry.
        """
        os.makedirs(self.directory, exist_ok=True)

        with open(self.path_for(height), 'w') as f:
            portalocker.lock(f, LOCK_EX)
            json.dump({"height": height, "hash": block_hash, "raw": raw_block.hex()}, f)
