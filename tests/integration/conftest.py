"""Shared fixtures for integration tests."""

import json

import httpx
import pytest
import yaml


@pytest.fixture
def descriptor_dir(tmp_path):
    """A descriptor directory covering static, http, file, and one invalid document."""
    root = tmp_path / "knowledge-data"
    root.mkdir()

    (root / "10-dogs.json").write_text(
        json.dumps(
            {
                "id": "dogs",
                "name": "Dogs",
                "keywords": ["dog", "puppy", "kelpie"],
                "priority": 60,
                "backendKind": "static",
                "static": {"text": "DOG FACTS", "suggestions": ["Tell me about kelpies"]},
            }
        )
    )
    (root / "20-rates.yaml").write_text(
        yaml.safe_dump(
            {
                "id": "rates",
                "name": "Exchange Rates",
                "keywords": ["exchange rate", "currency"],
                "priority": 40,
                "backendKind": "http",
                "http": {"endpoint": "https://rates.example.com/latest", "cacheTtlSeconds": 60},
            }
        )
    )
    (root / "30-handbook.yml").write_text(
        yaml.safe_dump(
            {
                "id": "handbook",
                "name": "Handbook",
                "keywords": ["vacation"],
                "backendKind": "file",
                "file": {"path": "handbook.md"},
            }
        )
    )
    (root / "40-broken.json").write_text(json.dumps({"name": "no id", "backendKind": "static"}))
    (root / "notes.txt").write_text("not a descriptor")
    (tmp_path / "handbook.md").write_text("Employees get 25 vacation days.")

    return root


@pytest.fixture
def rates_transport():
    """MockTransport serving the rates endpoint; ``.requests`` counts calls."""

    class Transport:
        def __init__(self):
            self.requests = []

        def __call__(self, request):
            self.requests.append(request)
            return httpx.Response(
                200,
                json={"count": 2, "statistics": {"EUR/USD": 1.08, "GBP/USD": 1.27}},
            )

    return Transport()
