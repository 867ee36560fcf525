"""Contract loader for contract.yaml."""

from __future__ import annotations

from pathlib import Path

import yaml

from experience_mcp.contract.models import ExperienceContract


def load_contract(path: str) -> ExperienceContract:
    contract_path = Path(path)
    if not contract_path.exists():
        raise FileNotFoundError(f"Contract file not found: {contract_path}")
    with contract_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return ExperienceContract.from_yaml(data)
