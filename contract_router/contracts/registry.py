from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import yaml

from contract_router.contracts.definition import CONTRACT_MODES, CONTRACT_NAMES, Contract

logger = logging.getLogger(__name__)

DEFAULT_CONTRACTS_DIR = Path(__file__).resolve().parents[1] / "configs" / "contracts"


def _parse_retries(name: str, raw: Any) -> Dict[int, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Contract {name}: retries must be a mapping of index -> text")
    retries: Dict[int, str] = {}
    for key, text in raw.items():
        try:
            index = int(key)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Contract {name}: retry key {key!r} is not an integer") from exc
        if index < 0:
            raise ValueError(f"Contract {name}: retry key {index} is negative")
        if isinstance(text, str) and text.strip():
            retries[index] = text.strip()
    return retries


def contract_from_mapping(payload: Dict[str, Any]) -> Contract:
    name = str(payload.get("name", "")).strip()
    if not name:
        raise ValueError("Contract definition is missing 'name'")
    model = str(payload.get("model", "")).strip()
    if not model:
        raise ValueError(f"Contract {name}: missing 'model'")
    mode = str(payload.get("mode", "chat")).strip().lower()
    if mode not in CONTRACT_MODES:
        raise ValueError(f"Contract {name}: unsupported mode {mode!r}")
    criteria = payload.get("criteria") or []
    if not isinstance(criteria, list):
        raise ValueError(f"Contract {name}: criteria must be a list")
    return Contract(
        name=name,
        model=model,
        mode=mode,
        system_prompt=(payload.get("system_prompt") or "").strip(),
        user_prompt=(payload.get("user_prompt") or "").strip(),
        prompt=(payload.get("prompt") or "").strip(),
        retries=_parse_retries(name, payload.get("retries")),
        expects_json=bool(payload.get("expects_json", False)),
        criteria=[str(item) for item in criteria],
    )


class ContractRegistry:
    """Named contracts loaded from YAML definitions."""

    def __init__(self, contracts: Optional[Dict[str, Contract]] = None) -> None:
        self._contracts: Dict[str, Contract] = dict(contracts or {})

    @classmethod
    def from_directory(cls, directory: Path = DEFAULT_CONTRACTS_DIR) -> "ContractRegistry":
        contracts: Dict[str, Contract] = {}
        for path in sorted(directory.glob("*.yaml")):
            try:
                payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid contract file {path.name}: {exc}") from exc
            if not isinstance(payload, dict):
                raise ValueError(f"Contract file {path.name} must contain a mapping")
            contract = contract_from_mapping(payload)
            if contract.name in contracts:
                raise ValueError(f"Duplicate contract name {contract.name} in {path.name}")
            contracts[contract.name] = contract
        missing = [name for name in CONTRACT_NAMES if name not in contracts]
        if missing:
            raise ValueError(f"Missing contract definitions: {', '.join(missing)}")
        logger.debug("[contracts] loaded %d contracts from %s", len(contracts), directory)
        return cls(contracts)

    def get(self, name: str) -> Contract:
        try:
            return self._contracts[name]
        except KeyError as exc:
            raise KeyError(f"Unknown contract: {name}") from exc

    def __contains__(self, name: object) -> bool:
        return name in self._contracts

    def __iter__(self) -> Iterator[Contract]:
        return iter(self._contracts.values())
