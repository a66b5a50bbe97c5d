"""
Element contract: forward map plus hand-derived Jacobian actions.

An element maps parameters theta and input features Y to output features

    Z = apply(theta, Y)

where apply can be anything from a single affine transform to a whole
block of layers. Each element provides:

- split, apply, n_theta, n_feat_in, n_feat_out, init_theta (mandatory)
- j_theta_mv / j_theta_t_mv: action of dZ/dtheta and its transpose
- j_y_mv / j_y_t_mv: action of dZ/dY and its transpose

The base class combines these into jmv, jt_mv and jt_mv_stacked, and wraps
them as LinearOperator objects for solvers and optimizers. A concrete
element overrides either the specialized actions or the combined ones;
the defaults of each are written in terms of the other.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, NamedTuple, Optional, Sequence, Tuple

import torch

from .errors import ConfigurationError, ContractViolationError
from .ops import LinearOperator, check_numel, check_theta, is_zero, num_examples


@dataclass(frozen=True)
class Cache:
    """
    Intermediates from one apply() call, needed by derivatives at the same (theta, Y).

    The stored mapping is read-only. Reusing a cache at a different point
    is not detected.
    """
    values: Mapping[str, torch.Tensor]

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __getitem__(self, key: str) -> torch.Tensor:
        return self.values[key]

    def __contains__(self, key) -> bool:
        return key in self.values

    def __len__(self) -> int:
        return len(self.values)


class ElementOutput(NamedTuple):
    """Result of Element.apply: output features, auxiliary output and cache."""
    Z: torch.Tensor
    Z_data: Optional[torch.Tensor]
    tmp: Cache


def _overrides(element, name: str) -> bool:
    return getattr(type(element), name) is not getattr(Element, name)


def _check_selector(selector: Sequence) -> Tuple[bool, bool]:
    if len(selector) != 2 or any(flag not in (0, 1) for flag in selector):
        raise ConfigurationError(f"selector must hold two 0/1 flags, got {selector!r}")
    if not selector[0]:
        raise ConfigurationError("selector must request the theta derivative")
    return bool(selector[0]), bool(selector[1])


class Element:
    """Base class for all network elements (transforms, layers, blocks)."""

    # ---------- mandatory primitives ----------
    def n_theta(self) -> int:
        """Number of parameters, i.e. numel(theta)."""
        raise ContractViolationError(self, "n_theta")

    def n_feat_in(self) -> int:
        """Number of input features, i.e. size(Y, 0)."""
        raise ContractViolationError(self, "n_feat_in")

    def n_feat_out(self) -> int:
        """Number of output features."""
        raise ContractViolationError(self, "n_feat_out")

    def split(self, theta: torch.Tensor) -> Tuple[torch.Tensor, ...]:
        """Partition theta into the parameters of the sub-elements."""
        raise ContractViolationError(self, "split")

    def init_theta(self) -> torch.Tensor:
        """Freshly initialized parameter vector of length n_theta()."""
        raise ContractViolationError(self, "init_theta")

    def apply(self, theta: torch.Tensor, Y: torch.Tensor) -> ElementOutput:
        """
        Forward map.

        Args:
            theta: [n_theta] parameters
            Y: [n_feat_in, nex] input features (or flattened)

        Returns:
            ElementOutput(Z, Z_data, tmp) with Z of shape [n_feat_out, nex]
        """
        raise ContractViolationError(self, "apply")

    # ---------- derivatives w.r.t. theta ----------
    def j_theta_mv(self, dtheta: torch.Tensor, theta: torch.Tensor, Y: torch.Tensor,
                   tmp: Optional[Cache] = None) -> torch.Tensor:
        """
        Compute dZ = J_theta(theta, Y) dtheta.

        Args:
            dtheta: [n_theta] perturbation of theta
            theta: current theta
            Y: current Y
            tmp: cache from apply(theta, Y)

        Returns:
            [n_feat_out, nex] directional derivative
        """
        if not _overrides(self, "jmv"):
            raise ContractViolationError(self, "j_theta_mv or jmv")
        return self.jmv(dtheta, None, theta, Y, tmp)

    def j_theta_t_mv(self, W: torch.Tensor, theta: torch.Tensor, Y: torch.Tensor,
                     tmp: Optional[Cache] = None) -> torch.Tensor:
        """
        Compute dtheta = J_theta(theta, Y)^T W.

        Returns:
            [n_theta] gradient-like vector
        """
        if not _overrides(self, "jt_mv"):
            raise ContractViolationError(self, "j_theta_t_mv or jt_mv")
        return self.jt_mv(W, theta, Y, tmp, with_y=False)[0]

    # ---------- derivatives w.r.t. Y ----------
    def j_y_mv(self, dY: torch.Tensor, theta: torch.Tensor, Y: torch.Tensor,
               tmp: Optional[Cache] = None) -> torch.Tensor:
        """
        Compute dZ = J_Y(theta, Y) dY.

        Returns:
            [n_feat_out, nex] directional derivative
        """
        if not _overrides(self, "jmv"):
            raise ContractViolationError(self, "j_y_mv or jmv")
        return self.jmv(None, dY, theta, Y, tmp)

    def j_y_t_mv(self, W: torch.Tensor, theta: torch.Tensor, Y: torch.Tensor,
                 tmp: Optional[Cache] = None) -> torch.Tensor:
        """
        Compute dY = J_Y(theta, Y)^T W.

        Returns:
            tensor shaped like Y
        """
        if not _overrides(self, "jt_mv"):
            raise ContractViolationError(self, "j_y_t_mv or jt_mv")
        return self.jt_mv(W, theta, Y, tmp, with_y=True)[1]

    # ---------- combined derivatives ----------
    def jmv(self, dtheta: Optional[torch.Tensor], dY: Optional[torch.Tensor],
            theta: torch.Tensor, Y: torch.Tensor, tmp: Optional[Cache] = None) -> torch.Tensor:
        """
        Compute dZ = J_theta dtheta + J_Y dY.

        A perturbation that is None, empty or exactly zero is skipped; if both
        are skipped the result is an exact zero tensor.

        Returns:
            [n_feat_out, nex] directional derivative
        """
        nex = num_examples(Y, self.n_feat_in())
        dZ = None
        if not is_zero(dtheta):
            dZ = self.j_theta_mv(dtheta, theta, Y, tmp)
        if not is_zero(dY):
            dZt = self.j_y_mv(dY, theta, Y, tmp)
            dZ = dZt if dZ is None else dZ + dZt
        if dZ is None:
            dZ = torch.zeros(self.n_feat_out(), nex, dtype=Y.dtype, device=Y.device)
        return dZ

    def jt_mv(self, W: torch.Tensor, theta: torch.Tensor, Y: torch.Tensor,
              tmp: Optional[Cache] = None,
              with_y: bool = True) -> Tuple[torch.Tensor, Optional[torch.Tensor]]:
        """
        Compute (dtheta, dY) = (J_theta^T W, J_Y^T W).

        Args:
            W: [n_feat_out, nex] output perturbation (or flattened)
            theta: current theta
            Y: current Y
            tmp: cache from apply(theta, Y)
            with_y: also compute dY; the Y adjoint is skipped (None) otherwise

        Returns:
            (dtheta [n_theta], dY shaped like Y or None)
        """
        dtheta = self.j_theta_t_mv(W, theta, Y, tmp)
        dY = self.j_y_t_mv(W, theta, Y, tmp) if with_y else None
        return dtheta, dY

    def jt_mv_stacked(self, W: torch.Tensor, theta: torch.Tensor, Y: torch.Tensor,
                      tmp: Optional[Cache] = None, selector: Sequence = (1, 1)) -> torch.Tensor:
        """
        Adjoint action returned as one vector [dtheta; vec(dY)].

        With selector (1, 0) only dtheta is computed and returned.
        """
        _, with_y = _check_selector(selector)
        dtheta, dY = self.jt_mv(W, theta, Y, tmp, with_y=with_y)
        if not with_y:
            return dtheta.reshape(-1)
        return torch.cat([dtheta.reshape(-1), dY.reshape(-1)])

    # ---------- Jacobians as linear operators ----------
    def get_j_y_op(self, theta: torch.Tensor, Y: torch.Tensor,
                   tmp: Optional[Cache] = None) -> LinearOperator:
        """Jacobian w.r.t. Y around (theta, Y) as a LinearOperator."""
        nex = num_examples(Y, self.n_feat_in())
        m = nex * self.n_feat_out()
        n = Y.numel()

        def Amv(x):
            return self.j_y_mv(x.reshape(Y.shape), theta, Y, tmp)

        def ATmv(x):
            return self.j_y_t_mv(x, theta, Y, tmp)

        return LinearOperator(m, n, Amv, ATmv)

    def get_j_theta_op(self, theta: torch.Tensor, Y: torch.Tensor,
                       tmp: Optional[Cache] = None) -> LinearOperator:
        """Jacobian w.r.t. theta around (theta, Y) as a LinearOperator."""
        nex = num_examples(Y, self.n_feat_in())
        m = nex * self.n_feat_out()
        n = check_theta(theta, self.n_theta()).numel()

        def Amv(x):
            return self.j_theta_mv(x, theta, Y, tmp)

        def ATmv(x):
            return self.j_theta_t_mv(x, theta, Y, tmp)

        return LinearOperator(m, n, Amv, ATmv)

    def get_j_op(self, theta: torch.Tensor, Y: torch.Tensor,
                 tmp: Optional[Cache] = None) -> LinearOperator:
        """
        Jacobian w.r.t. the stacked unknown [theta; vec(Y)], so that

            Z(theta + dth, Y + dY) ~ Z(theta, Y) + J [dth; vec(dY)]
        """
        nex = num_examples(Y, self.n_feat_in())
        m = nex * self.n_feat_out()
        nth = check_theta(theta, self.n_theta()).numel()

        def Amv(x):
            return self.jmv(x[:nth], x[nth:].reshape(Y.shape), theta, Y, tmp)

        def ATmv(x):
            return self.jt_mv_stacked(x, theta, Y, tmp, selector=(1, 1))

        return LinearOperator(m, nth + Y.numel(), Amv, ATmv)

    # ---------- linearizations ----------
    def linearize_y(self, theta: torch.Tensor, Y: torch.Tensor) -> Tuple[torch.Tensor, LinearOperator]:
        """
        Linearization in Y: Z(theta, Y + dY) ~ Z + J dY.

        Returns:
            (Z, J) with J the Jacobian w.r.t. Y built from the same apply() cache
        """
        Z, _, tmp = self.apply(theta, Y)
        return Z, self.get_j_y_op(theta, Y, tmp)

    def linearize_theta(self, theta: torch.Tensor, Y: torch.Tensor) -> Tuple[torch.Tensor, LinearOperator]:
        """
        Linearization in theta: Z(theta + dth, Y) ~ Z + J dth.

        Returns:
            (Z, J) with J the Jacobian w.r.t. theta built from the same apply() cache
        """
        Z, _, tmp = self.apply(theta, Y)
        return Z, self.get_j_theta_op(theta, Y, tmp)

    # ---------- multigrid / continuation ----------
    def prolongate_weights(self, theta: torch.Tensor) -> torch.Tensor:
        return theta

    def prolongate_conv_stencils(self, theta: torch.Tensor, get_rp=None) -> torch.Tensor:
        # prolongate convolution stencils. By default do nothing.
        return theta

    def restrict_conv_stencils(self, theta: torch.Tensor, get_rp=None) -> torch.Tensor:
        # restrict convolution stencils. By default do nothing.
        return theta


class LinearInFeaturesMixin:
    """
    Y-derivatives for elements whose output is get_op(theta) @ Y.

    The Jacobian w.r.t. Y of a map linear in Y is the map itself, so
    J_Y dY = K dY and J_Y^T W = K^T W with K = get_op(theta).
    """

    def j_y_mv(self, dY, theta, Y, tmp=None):
        nex = num_examples(Y, self.n_feat_in())
        check_numel(dY, self.n_feat_in() * nex, "dY")
        return self.get_op(theta) @ dY.reshape(self.n_feat_in(), nex)

    def j_y_t_mv(self, W, theta, Y, tmp=None):
        nex = num_examples(Y, self.n_feat_in())
        check_numel(W, self.n_feat_out() * nex, "W")
        dY = self.get_op(theta).T @ W.reshape(self.n_feat_out(), nex)
        return dY.reshape(Y.shape)
