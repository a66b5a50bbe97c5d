"""Tests for jvpnet.config."""

from __future__ import annotations

import pytest
import torch

from jvpnet import CGConfig, ConfigurationError, ElementConfig


class TestElementConfig:
    """Validation at construction and on assignment."""

    def test_defaults(self):
        cfg = ElementConfig()
        assert cfg.Q == 1.0
        assert cfg.use_gpu is False
        assert cfg.precision == "double"
        assert cfg.dtype == torch.float64
        assert cfg.device == torch.device("cpu")
        assert not cfg.has_reduction

    @pytest.mark.parametrize("value, expected", [(0, False), (1, True), (True, True), (False, False)])
    def test_use_gpu_accepts_flags(self, value, expected):
        assert ElementConfig(use_gpu=value).use_gpu is expected

    @pytest.mark.parametrize("value", [2, -1, 0.5, "1", None])
    def test_use_gpu_rejects(self, value):
        with pytest.raises(ConfigurationError, match="use_gpu must be 0 or 1"):
            ElementConfig(use_gpu=value)

    def test_precision_single(self):
        assert ElementConfig(precision="single").dtype == torch.float32

    @pytest.mark.parametrize("value", ["half", "Double", 64, None])
    def test_precision_rejects(self, value):
        with pytest.raises(ConfigurationError, match="precision must be single or double"):
            ElementConfig(precision=value)

    def test_failed_assignment_keeps_prior_value(self):
        cfg = ElementConfig(precision="single")
        with pytest.raises(ConfigurationError):
            cfg.precision = "bfloat16"
        assert cfg.precision == "single"
        with pytest.raises(ConfigurationError):
            cfg.use_gpu = 7
        assert cfg.use_gpu is False

    def test_Q_matrix(self):
        cfg = ElementConfig(Q=torch.eye(3))
        assert cfg.has_reduction

    @pytest.mark.parametrize("value", [2.0, 0, torch.ones(3), "eye"])
    def test_Q_rejects(self, value):
        with pytest.raises(ConfigurationError):
            ElementConfig(Q=value)


class TestCGConfig:
    """Solver settings."""

    def test_defaults(self):
        cfg = CGConfig()
        assert cfg.tol == 1e-6
        assert cfg.maxiter == 2000
        assert cfg.verbose is False
        assert cfg.jitter == 0.0

    def test_rejects_nonpositive_tol(self):
        with pytest.raises(ConfigurationError):
            CGConfig(tol=0.0)

    def test_rejects_zero_maxiter(self):
        with pytest.raises(ConfigurationError):
            CGConfig(maxiter=0)
