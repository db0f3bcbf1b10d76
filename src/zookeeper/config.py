from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_ZOO_USER_ID = 1008563327380766812
DEFAULT_ZOO_API_BASE_URL = "https://gdcolon.com/zoo"


@dataclass(frozen=True)
class Settings:
    discord_token: str
    command_prefix: str
    store_path: Path
    zoo_user_id: int = DEFAULT_ZOO_USER_ID
    zoo_api_base_url: str = DEFAULT_ZOO_API_BASE_URL
    owner_ids: frozenset[int] = field(default_factory=frozenset)
    sweep_interval_sec: float = 1.0

    @staticmethod
    def load(path: Path | None = None) -> "Settings":
        values = _parse_passwords_file(path or Path(os.environ.get("ZOOKEEPER_PASSWORDS", "passwords.txt")))
        token = values.get("DISCORD_TOKEN", "").strip() or os.environ.get("DISCORD_TOKEN", "").strip()
        command_prefix = values.get("COMMAND_PREFIX", "z!")
        store_path = Path(values.get("STORE_PATH", "data/zookeeper.msgpack"))
        zoo_user_id = int(values.get("ZOO_USER_ID", str(DEFAULT_ZOO_USER_ID)))
        zoo_api_base_url = values.get("ZOO_API_BASE_URL", DEFAULT_ZOO_API_BASE_URL).strip().rstrip("/")
        owner_ids = frozenset(_parse_id_list(values.get("OWNER_IDS", "")))
        sweep_interval_sec = float(values.get("SWEEP_INTERVAL_SEC", "1.0"))
        if sweep_interval_sec <= 0:
            raise RuntimeError("SWEEP_INTERVAL_SEC must be positive.")
        return Settings(
            discord_token=token,
            command_prefix=command_prefix,
            store_path=store_path,
            zoo_user_id=zoo_user_id,
            zoo_api_base_url=zoo_api_base_url,
            owner_ids=owner_ids,
            sweep_interval_sec=sweep_interval_sec,
        )


def _parse_passwords_file(path: Path) -> dict[str, str]:
    if not path.exists():
        raise RuntimeError(f"{path} not found. Copy passwords.example.txt to {path.name} and fill values.")
    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values


def _parse_id_list(raw: str) -> list[int]:
    out: list[int] = []
    for part in raw.replace(";", ",").split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise RuntimeError(f"Invalid id in OWNER_IDS: {part!r}")
        out.append(int(part))
    return out
