"""
Dense affine element: Z = reshape(Q theta, nK) @ Y.

Only the theta-derivatives are written out here; the Y-derivatives of a
map linear in Y come from LinearInFeaturesMixin.
"""

import dataclasses
import logging
from typing import Optional, Sequence

import torch

from .config import CGConfig, ElementConfig
from .element import Cache, Element, ElementOutput, LinearInFeaturesMixin
from .errors import ConfigurationError
from .ops import as_batch, check_numel, check_theta, num_examples
from .solver import solve_spd

logger = logging.getLogger(__name__)

_OPTIONS = {f.name for f in dataclasses.fields(ElementConfig)}


class Dense(LinearInFeaturesMixin, Element):
    """
    Linear transformation given by a dense matrix.

    Args:
        nK: (out_features, in_features)
        config: element configuration; built from **options when omitted
        **options: Q, use_gpu, precision (see ElementConfig)
    """

    def __init__(self, nK: Sequence[int], config: Optional[ElementConfig] = None, **options):
        if len(nK) != 2 or min(nK) < 1:
            raise ConfigurationError(f"nK must be two positive sizes, got {tuple(nK)}")
        unknown = set(options) - _OPTIONS
        if unknown:
            raise ConfigurationError(f"Unknown option(s) for Dense: {sorted(unknown)}")
        if config is not None and options:
            raise ConfigurationError("Pass either config or keyword options, not both")

        self.nK = (int(nK[0]), int(nK[1]))
        config = config if config is not None else ElementConfig(**options)

        if config.has_reduction:
            Q = config.Q
            if Q.shape[0] != self.nK[0] * self.nK[1]:
                raise ConfigurationError(
                    f"Q has {Q.shape[0]} rows, expected prod(nK) = {self.nK[0] * self.nK[1]}")
            # private copy; the caller's config keeps its own Q
            config = dataclasses.replace(config, Q=Q.to(dtype=config.dtype, device=config.device))
        self.config = config

        logger.debug("Dense(nK=%s, nTheta=%d, precision=%s, use_gpu=%s)",
                     self.nK, self.n_theta(), self.config.precision, self.config.use_gpu)

    def gpu_var(self, use_gpu: bool, precision: str) -> "Dense":
        """Copy of this element with a new device and precision."""
        config = dataclasses.replace(self.config, use_gpu=use_gpu, precision=precision)
        return Dense(self.nK, config=config)

    def n_theta(self) -> int:
        if self.config.has_reduction:
            return self.config.Q.shape[1]
        return self.nK[0] * self.nK[1]

    def n_feat_in(self) -> int:
        return self.nK[1]

    def n_feat_out(self) -> int:
        return self.nK[0]

    def split(self, theta):
        return (theta,)

    def init_theta(self, generator: Optional[torch.Generator] = None) -> torch.Tensor:
        return torch.rand(self.n_theta(), generator=generator,
                          dtype=self.config.dtype, device=self.config.device)

    def get_op(self, theta: torch.Tensor) -> torch.Tensor:
        """Operator matrix reshape(Q theta, nK)."""
        theta = check_theta(theta, self.n_theta())
        if self.config.has_reduction:
            theta = self.config.Q.to(theta) @ theta
        return theta.reshape(self.nK)

    def apply(self, theta, Y):
        Y = as_batch(Y, self.n_feat_in())
        return ElementOutput(self.get_op(theta) @ Y, None, Cache({}))

    def j_theta_mv(self, dtheta, theta, Y, tmp=None):
        # linear in theta: the Jacobian applied to dtheta is the map built from dtheta
        return self.get_op(dtheta) @ as_batch(Y, self.n_feat_in())

    def get_j_theta_mat(self, theta, Y, tmp=None) -> torch.Tensor:
        """
        Jacobian w.r.t. theta as an explicit [nFeatOut*nex, nTheta] matrix.

        Uses the row-major vec convention of get_op. Only meant for small
        problems and debugging; get_j_theta_op stays matrix-free.
        """
        Y = as_batch(Y, self.n_feat_in())
        eye = torch.eye(self.nK[0], dtype=Y.dtype, device=Y.device)
        J = torch.kron(eye, Y.T.contiguous())
        if self.config.has_reduction:
            J = J @ self.config.Q.to(J)
        return J

    def j_theta_t_mv(self, W, theta, Y, tmp=None):
        nex = num_examples(Y, self.n_feat_in())
        check_numel(W, self.n_feat_out() * nex, "W")
        Y = Y.reshape(self.n_feat_in(), nex)
        W = W.reshape(self.n_feat_out(), nex)
        dtheta = (W @ Y.T).reshape(-1)
        if self.config.has_reduction:
            dtheta = self.config.Q.to(dtheta).T @ dtheta
        return dtheta

    def implicit_time_step(self, theta, Y, h: float, method: str = "cholesky",
                           cg_config: Optional[CGConfig] = None) -> torch.Tensor:
        """
        Solve (h K^T K + I) Z = Y with K = get_op(theta).

        The system matrix is symmetric positive definite for h >= 0.

        Args:
            theta: current theta
            Y: [nFeatIn, nex] right-hand side (or flattened)
            h: step size
            method: 'cholesky' (direct) or 'cg' (conjugate gradient per column)
            cg_config: CG settings for method='cg'

        Returns:
            Z shaped like Y
        """
        if h < 0:
            raise ConfigurationError(f"step size h must be non-negative, got {h}")
        K = self.get_op(theta)
        Y2 = as_batch(Y, self.n_feat_in())

        if method == "cholesky":
            A = h * (K.T @ K) + torch.eye(K.shape[1], dtype=K.dtype, device=K.device)
            L = torch.linalg.cholesky(A)
            Z = torch.cholesky_solve(Y2, L)
        elif method == "cg":
            def A_mv(z):
                return h * (K.T @ (K @ z)) + z

            Z, info = solve_spd(A_mv, Y2, cg_config or CGConfig())
            logger.debug("implicit_time_step: CG iterations %s", info["iters"])
        else:
            raise ConfigurationError(f"method must be 'cholesky' or 'cg', got {method!r}")
        return Z.reshape(Y.shape)

    def __repr__(self):
        return f"Dense(nK={self.nK}, nTheta={self.n_theta()}, precision={self.config.precision!r})"
