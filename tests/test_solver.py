"""Tests for jvpnet.solver."""

from __future__ import annotations

import logging

import torch

from jvpnet import CGConfig, cg, solve_spd


def _spd(n, gen):
    M = torch.randn(n, n, generator=gen, dtype=torch.float64)
    return M @ M.T + n * torch.eye(n, dtype=torch.float64)


class TestCG:
    """Conjugate gradient on small SPD systems."""

    def test_solves(self, gen):
        A = _spd(8, gen)
        b = torch.randn(8, generator=gen, dtype=torch.float64)
        x, info = cg(lambda v: A @ v, b, torch.zeros(8, dtype=torch.float64), tol=1e-12)
        assert info["converged"]
        torch.testing.assert_close(A @ x, b)
        assert info["relres"] <= 1e-12
        assert 0 < info["iters"] <= 24

    def test_zero_rhs(self):
        x, info = cg(lambda v: v, torch.zeros(4), torch.ones(4))
        assert info["converged"]
        assert info["iters"] == 0
        assert torch.equal(x, torch.zeros(4))

    def test_not_converged_warns(self, gen, caplog):
        A = _spd(30, gen)
        b = torch.randn(30, generator=gen, dtype=torch.float64)
        with caplog.at_level(logging.WARNING, logger="jvpnet.solver"):
            _, info = cg(lambda v: A @ v, b, torch.zeros(30, dtype=torch.float64), tol=1e-14, maxiter=1)
        assert not info["converged"]
        assert "did not converge" in caplog.text

    def test_verbose_logs(self, gen, caplog):
        A = _spd(5, gen)
        b = torch.randn(5, generator=gen, dtype=torch.float64)
        with caplog.at_level(logging.INFO, logger="jvpnet.solver"):
            cg(lambda v: A @ v, b, torch.zeros(5, dtype=torch.float64), verbose=True)
        assert "CG: iter 0" in caplog.text
        assert "converged in" in caplog.text


class TestSolveSPD:
    """Column-by-column solves."""

    def test_multiple_rhs(self, gen):
        A = _spd(6, gen)
        B = torch.randn(6, 3, generator=gen, dtype=torch.float64)
        X, info = solve_spd(lambda v: A @ v, B, CGConfig(tol=1e-12))
        assert X.shape == (6, 3)
        assert all(info["converged"])
        torch.testing.assert_close(A @ X, B)

    def test_jitter(self, gen):
        A = _spd(4, gen)
        B = torch.randn(4, 2, generator=gen, dtype=torch.float64)
        X, _ = solve_spd(lambda v: A @ v, B, CGConfig(tol=1e-12, jitter=0.5))
        torch.testing.assert_close((A + 0.5 * torch.eye(4, dtype=torch.float64)) @ X, B)

    def test_iteration_counts(self, gen):
        A = _spd(6, gen)
        B = torch.randn(6, 2, generator=gen, dtype=torch.float64)
        B[:, 1] = 0.0
        _, info = solve_spd(lambda v: A @ v, B, CGConfig(tol=1e-12))
        assert info["iters"][1] == 0
        assert 0 < info["iters"][0] <= 18
        assert info["relres"][0] <= 1e-12
