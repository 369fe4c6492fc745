from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from neuralchat_proxy.config import (
    DEFAULT_CANDIDATE_MODELS,
    UpstreamConvention,
    load_proxy_config,
)


def test_default_candidates_when_no_path_configured() -> None:
    config = load_proxy_config(None)

    assert config.models() == list(DEFAULT_CANDIDATE_MODELS)
    assert all(
        candidate.convention is UpstreamConvention.CHAT_COMPLETIONS
        for candidate in config.candidates
    )


def test_load_candidates_from_yaml_preserves_order(tmp_path: Path) -> None:
    path = tmp_path / "candidates.yaml"
    path.write_text(
        "candidates:\n"
        "  - Qwen/Qwen2.5-7B-Instruct\n"
        "  - model: ' gpt2 '\n"
        "    convention: raw_generation\n"
        "    base_url: https://inference.example/models/\n",
        encoding="utf-8",
    )

    config = load_proxy_config(str(path))

    assert config.models() == ["Qwen/Qwen2.5-7B-Instruct", "gpt2"]
    assert config.candidates[0].convention is UpstreamConvention.CHAT_COMPLETIONS
    assert config.candidates[1].convention is UpstreamConvention.RAW_GENERATION
    assert config.candidates[1].base_url == "https://inference.example/models"


def test_missing_config_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_proxy_config(str(tmp_path / "missing.yaml"))


def test_empty_candidate_list_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "candidates.yaml"
    path.write_text("candidates: []\n", encoding="utf-8")

    with pytest.raises(ValidationError):
        load_proxy_config(str(path))


def test_unknown_convention_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "candidates.yaml"
    path.write_text(
        "candidates:\n  - model: m\n    convention: websocket\n", encoding="utf-8"
    )

    with pytest.raises(ValidationError):
        load_proxy_config(str(path))


def test_non_mapping_document_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "candidates.yaml"
    path.write_text("- just-a-list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_proxy_config(str(path))
