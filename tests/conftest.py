"""Shared fixtures for vaultgraph tests."""

import sys
from pathlib import Path

import pytest

# Add project root to path
_project_root = Path(__file__).parent.parent
sys.path.insert(0, str(_project_root))

from vaultgraph.processing_layer.graph_builder import GraphBuilder
from vaultgraph.retrieval_layer.search_engine import SearchEngine
from vaultgraph.main import GraphWorker


@pytest.fixture
def graph():
    """Fixture to create an empty GraphBuilder."""
    return GraphBuilder()


@pytest.fixture
def search_engine():
    """Fixture to create a SearchEngine."""
    return SearchEngine()


@pytest.fixture
def worker():
    """Fixture to create an in-process GraphWorker with packaged defaults."""
    return GraphWorker()


@pytest.fixture
def vault_nodes():
    """Five notes of a small vault."""
    return [
        {"path": "index.md", "tags": ["hub"]},
        {"path": "alpha.md", "tags": ["topic"]},
        {"path": "beta.md", "tags": ["topic", "draft"]},
        {"path": "gamma.md", "tags": []},
        {"path": "orphan.md", "tags": []},
    ]


@pytest.fixture
def vault_edges():
    """Links between the vault notes, including a cycle and a parallel edge."""
    return [
        {"source": "index.md", "target": "alpha.md"},
        {"source": "index.md", "target": "beta.md", "weight": 2.0},
        {"source": "alpha.md", "target": "beta.md"},
        {"source": "beta.md", "target": "gamma.md"},
        {"source": "gamma.md", "target": "index.md"},
        {"source": "alpha.md", "target": "beta.md", "weight": 0.5},
    ]
