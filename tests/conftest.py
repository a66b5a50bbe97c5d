"""Shared fixtures: a dense element and a small nonlinear element."""

from __future__ import annotations

import pytest
import torch

from jvpnet import Cache, Dense, Element, ElementOutput, as_batch, num_examples


class TanhShift(Element):
    """Z = tanh(Y + theta) with theta a per-feature shift.

    Provides only the combined jmv / jt_mv, so the specialized actions
    exercise the base-class defaults.
    """

    def __init__(self, n: int):
        self.n = n

    def n_theta(self):
        return self.n

    def n_feat_in(self):
        return self.n

    def n_feat_out(self):
        return self.n

    def split(self, theta):
        return (theta,)

    def init_theta(self):
        return torch.zeros(self.n, dtype=torch.float64)

    def apply(self, theta, Y):
        Z = torch.tanh(as_batch(Y, self.n) + theta[:, None])
        return ElementOutput(Z, None, Cache({"dA": 1 - Z**2}))

    def jmv(self, dtheta, dY, theta, Y, tmp=None):
        nex = num_examples(Y, self.n)
        dA = tmp["dA"]
        dZ = torch.zeros(self.n, nex, dtype=Y.dtype)
        if dtheta is not None:
            dZ = dZ + dA * dtheta[:, None]
        if dY is not None:
            dZ = dZ + dA * dY.reshape(self.n, nex)
        return dZ

    def jt_mv(self, W, theta, Y, tmp=None, with_y=True):
        nex = num_examples(Y, self.n)
        G = tmp["dA"] * W.reshape(self.n, nex)
        dY = G.reshape(Y.shape) if with_y else None
        return G.sum(dim=1), dY


@pytest.fixture
def dense():
    return Dense((4, 6))


@pytest.fixture
def tanh_shift():
    return TanhShift(5)


@pytest.fixture
def gen():
    return torch.Generator().manual_seed(1234)
