from __future__ import annotations

import pytest

from contract_router.contracts.definition import CONTRACT_NAMES, SCORING_EVALUATION, ContractPrompt
from contract_router.contracts.registry import ContractRegistry, contract_from_mapping
from contract_router.runner import derive_attempt_budget


def test_bundled_contracts_cover_every_name(contracts):
    assert sorted(contract.name for contract in contracts) == sorted(CONTRACT_NAMES)


@pytest.mark.parametrize(
    "name, budget",
    [
        ("INTENT_CLASSIFICATION", 3),
        ("LANGUAGE_DETECTION", 3),
        ("TOOL_ARGUMENT_EXTRACTION", 3),
        ("TOOL_ARGUMENT_VERIFICATION", 2),
        ("SCORING_EVALUATION", 2),
        ("STRICT_ANSWER", 2),
        ("CONVERSATIONAL_ANSWER", 2),
        ("RESPONSE_FORMATTING", 2),
        ("IMAGE_RECOGNITION", 2),
    ],
)
def test_attempt_budgets(contracts, name, budget):
    prompt = ContractPrompt(contract_name=name, model="m", retries=contracts.get(name).retries)

    assert derive_attempt_budget(prompt) == budget


def test_scoring_contract_declares_criteria(contracts):
    assert contracts.get(SCORING_EVALUATION).criteria == ["clarity", "correctness", "usefulness"]


def test_contract_from_mapping_parses_retries():
    contract = contract_from_mapping(
        {"name": "X", "model": "m", "mode": "RAW", "prompt": " p ", "retries": {"0": " again ", 2: ""}}
    )

    assert contract.mode == "raw"
    assert contract.prompt == "p"
    assert contract.retries == {0: "again"}


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"model": "m"}, "missing 'name'"),
        ({"name": "X"}, "missing 'model'"),
        ({"name": "X", "model": "m", "mode": "stream"}, "unsupported mode"),
        ({"name": "X", "model": "m", "retries": ["a"]}, "retries must be a mapping"),
        ({"name": "X", "model": "m", "retries": {"first": "a"}}, "not an integer"),
        ({"name": "X", "model": "m", "retries": {-1: "a"}}, "negative"),
    ],
)
def test_contract_from_mapping_rejects_bad_definitions(payload, message):
    with pytest.raises(ValueError, match=message):
        contract_from_mapping(payload)


def test_registry_requires_every_contract(tmp_path):
    (tmp_path / "one.yaml").write_text("name: STRICT_ANSWER\nmodel: m\nsystem_prompt: hi\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Missing contract definitions"):
        ContractRegistry.from_directory(tmp_path)


def test_registry_rejects_duplicates(tmp_path):
    for filename in ("a.yaml", "b.yaml"):
        (tmp_path / filename).write_text("name: STRICT_ANSWER\nmodel: m\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Duplicate contract name"):
        ContractRegistry.from_directory(tmp_path)


def test_unknown_contract_lookup(contracts):
    with pytest.raises(KeyError):
        contracts.get("NOPE")
