"""
Marketplace connection settings

Network and credential configuration lives in a .env file inside the data
directory, next to the requestor daemon's own state.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from dotenv import dotenv_values

from ..errors import ConfigError

logger = logging.getLogger(__name__)

ENV_FILE = ".env"
DEFAULT_REQUESTOR_URL = "tcp://127.0.0.1:7465"


@dataclass(frozen=True)
class MarketplaceSettings:
    """Requestor daemon endpoint and credentials"""
    requestor_url: str
    appkey: str

    @classmethod
    def load(cls, data_dir: Path) -> "MarketplaceSettings":
        """
        Load settings from <data_dir>/.env.

        Raises:
            ConfigError: If the file is missing or has no YAGNA_APPKEY
        """
        env_path = Path(data_dir) / ENV_FILE
        if not env_path.is_file():
            raise ConfigError(f"Marketplace settings not found: {env_path}")

        logger.debug(f"Loading marketplace settings from: {env_path}")
        values = dotenv_values(env_path)

        appkey = values.get("YAGNA_APPKEY")
        if not appkey:
            raise ConfigError(f"YAGNA_APPKEY is not set in {env_path}")

        return cls(
            requestor_url=values.get("GFAAS_REQUESTOR_URL") or DEFAULT_REQUESTOR_URL,
            appkey=appkey,
        )
