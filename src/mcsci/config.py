from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    host: str
    port: int
    timeout_s: float
    transcript_dir: Optional[Path]  # None = transcripts off
    server_config: Optional[Path]


def load_settings() -> Settings:
    load_dotenv(override=False)

    host = os.getenv("MCSCI_HOST", "127.0.0.1")
    port = int(os.getenv("MCSCI_PORT", "7878"))
    timeout_s = float(os.getenv("MCSCI_TIMEOUT_S", "5.0"))
    transcript_raw = os.getenv("MCSCI_TRANSCRIPT_DIR", "").strip()
    config_raw = os.getenv("MCSCI_SERVER_CONFIG", "").strip()

    return Settings(
        host=host,
        port=port,
        timeout_s=timeout_s,
        transcript_dir=Path(transcript_raw) if transcript_raw else None,
        server_config=Path(config_raw) if config_raw else None,
    )
