"""
Root pytest configuration for the DQN side-scroller tests.

This module provides shared configuration and markers for all tests.
"""

import pytest
import torch


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "gpu_required: marks tests that require CUDA GPU"
    )
    config.addinivalue_line(
        "markers", "slow: marks end-to-end tests that run full training sessions"
    )


def pytest_collection_modifyitems(config, items):
    """Skip GPU tests when CUDA is unavailable."""
    if torch.cuda.is_available():
        return
    skip_gpu = pytest.mark.skip(reason="CUDA not available")
    for item in items:
        if "gpu_required" in item.keywords:
            item.add_marker(skip_gpu)
