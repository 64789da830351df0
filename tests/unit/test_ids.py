"""Unit tests for identifier generation utilities."""

from __future__ import annotations

import re

from app.core.ids import generate_cuid, generate_runner_id


def test_generate_cuid_format_and_uniqueness() -> None:
    ids = [generate_cuid() for _ in range(200)]

    assert len(ids) == len(set(ids))
    assert all(len(item) == 24 for item in ids)
    assert all(item.startswith("c") for item in ids)
    assert all(item.isalnum() and item == item.lower() for item in ids)


def test_generate_cuid_sorts_by_creation_within_same_process() -> None:
    first = generate_cuid()
    second = generate_cuid()

    assert first[:9] <= second[:9]


def test_generate_runner_id_uses_prefix_and_hex_suffix() -> None:
    runner_id = generate_runner_id()
    custom = generate_runner_id("embed-runner")

    assert re.fullmatch(r"job-runner-[0-9a-f]{8}", runner_id)
    assert custom.startswith("embed-runner-")
    assert generate_runner_id() != runner_id
