"""Persisted client config, environment settings and logging setup."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Mapping

DEFAULT_WS_URL = "wss://isock.reetui.hackclub.app"
DEFAULT_API_URL = "https://back.reetui.hackclub.app"
CONFIG_FILENAME = "reechat.json"
LOG_FILENAME = "reechat.log"


def default_config_dir(env: Mapping[str, str] = os.environ) -> Path:
    override = env.get("REECHAT_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    base = env.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base).expanduser() / "reechat"


@dataclass
class ClientConfig:
    tutorial_seen: bool = False
    token: str | None = None
    username: str | None = None
    user_icon: str | None = None
    theme_name: str = "Default"


@dataclass(frozen=True)
class Settings:
    ws_url: str
    api_url: str
    config_dir: Path
    download_dir: Path
    chafa: str
    log_level: str

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILENAME

    @property
    def log_path(self) -> Path:
        return self.config_dir / LOG_FILENAME


def load_settings(env: Mapping[str, str] = os.environ) -> Settings:
    config_dir = default_config_dir(env)
    download_dir = env.get("REECHAT_DOWNLOAD_DIR") or str(Path.home() / "Downloads")
    return Settings(
        ws_url=env.get("REECHAT_WS_URL") or DEFAULT_WS_URL,
        api_url=env.get("REECHAT_API_URL") or DEFAULT_API_URL,
        config_dir=config_dir,
        download_dir=Path(download_dir).expanduser(),
        chafa=env.get("REECHAT_CHAFA") or "chafa",
        log_level=(env.get("REECHAT_LOG_LEVEL") or "INFO").upper(),
    )


def _atomic_write_json(path: Path, payload: dict[str, object]) -> None:
    path = path.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    content = json.dumps(payload, indent=2, sort_keys=True)

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


def load_config(path: Path) -> ClientConfig:
    """Read the config record; a missing or corrupt file yields defaults."""

    try:
        data = json.loads(path.expanduser().read_text(encoding="utf-8"))
    except FileNotFoundError:
        return ClientConfig()
    except (json.JSONDecodeError, ValueError):
        return ClientConfig()
    if not isinstance(data, dict):
        return ClientConfig()
    known = {f.name for f in fields(ClientConfig)}
    return ClientConfig(**{key: value for key, value in data.items() if key in known})


def save_config(config: ClientConfig, path: Path) -> None:
    _atomic_write_json(path, asdict(config))


def configure_logging(settings: Settings) -> None:
    """Send log records to a file; the terminal belongs to curses."""

    settings.config_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(settings.log_path),
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s",
    )
