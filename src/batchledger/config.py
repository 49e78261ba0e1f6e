"""Deployment configuration: who owns and operates the ledger, where data lives.

Values come from ``config/ledger.json``. Environment variables override
the file, and a ``.env`` file next to the config directory (or in the
working directory) is loaded first:

    BATCHLEDGER_OWNER       deployer identity of registry and workflow
    BATCHLEDGER_OPERATOR    initial registry operator
    BATCHLEDGER_REGULATOR   initial notice regulator
    BATCHLEDGER_DATA_DIR    directory for the event log and snapshot
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from batchledger.models.values import is_zero_identity


CONFIG_FILENAME = "ledger.json"

_ENV_OVERRIDES = {
    "BATCHLEDGER_OWNER": "owner",
    "BATCHLEDGER_OPERATOR": "operator",
    "BATCHLEDGER_REGULATOR": "regulator",
}


@dataclass(frozen=True)
class LedgerConfig:
    """Resolved deployment configuration."""
    owner: str
    operator: str
    regulator: str = ""
    anchoring_enabled: bool = True
    data_dir: Path = Path("data")
    event_log_file: str = "events.jsonl"
    state_file: str = "state.json"

    def __post_init__(self) -> None:
        if is_zero_identity(self.owner):
            raise ValueError("config: owner must be a non-zero identity")
        if is_zero_identity(self.operator):
            raise ValueError("config: operator must be a non-zero identity")

    @property
    def event_log_path(self) -> Path:
        return self.data_dir / self.event_log_file

    @property
    def state_path(self) -> Path:
        return self.data_dir / self.state_file

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        base_dir: Optional[Path] = None,
    ) -> LedgerConfig:
        """Build a config from parsed JSON. Relative data_dir resolves against base_dir."""
        owner = str(data.get("owner", ""))
        data_dir = Path(data.get("data_dir", "data"))
        if base_dir is not None and not data_dir.is_absolute():
            data_dir = (base_dir / data_dir).resolve()
        return cls(
            owner=owner,
            operator=str(data.get("operator") or owner),
            regulator=str(data.get("regulator", "")),
            anchoring_enabled=bool(data.get("anchoring_enabled", True)),
            data_dir=data_dir,
            event_log_file=str(data.get("event_log_file", "events.jsonl")),
            state_file=str(data.get("state_file", "state.json")),
        )

    @classmethod
    def from_config_dir(
        cls,
        config_dir: Path,
        env: Optional[Mapping[str, str]] = None,
    ) -> LedgerConfig:
        """Load ``ledger.json`` from config_dir and apply environment overrides.

        When env is None the process environment is used, after loading
        any ``.env`` file found in the config directory's parent.
        """
        path = config_dir / CONFIG_FILENAME
        if not path.exists():
            raise FileNotFoundError(f"Ledger config not found: {path}")
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)

        if env is None:
            load_dotenv(config_dir.parent / ".env")
            env = os.environ

        config = cls.from_dict(data, base_dir=config_dir)
        return config.with_overrides(env)

    def with_overrides(self, env: Mapping[str, str]) -> LedgerConfig:
        changes: dict[str, Any] = {}
        for var, attr in _ENV_OVERRIDES.items():
            value = env.get(var)
            if value:
                changes[attr] = value
        data_dir = env.get("BATCHLEDGER_DATA_DIR")
        if data_dir:
            changes["data_dir"] = Path(data_dir)
        return replace(self, **changes) if changes else self
