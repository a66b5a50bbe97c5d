"""
Linear operators and tensor shape helpers.

A LinearOperator describes a linear map R^n -> R^m only through its
forward action A·x and adjoint action A^T·y. Both act on flat vectors;
no matrix is stored.
"""

from typing import Callable, Optional, Tuple

import torch

from .errors import DimensionMismatchError


class LinearOperator:
    """
    Matrix-free linear map given by shape and two function handles.

    Args:
        m: output dimension
        n: input dimension
        matvec: x [n] -> A x [m]
        rmatvec: y [m] -> A^T y [n]
    """

    def __init__(self, m: int, n: int, matvec: Callable[[torch.Tensor], torch.Tensor],
                 rmatvec: Callable[[torch.Tensor], torch.Tensor]):
        self.m = int(m)
        self.n = int(n)
        self._matvec = matvec
        self._rmatvec = rmatvec

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.m, self.n)

    def matvec(self, x: torch.Tensor) -> torch.Tensor:
        """Apply A to a vector of length n."""
        if x.numel() != self.n:
            raise DimensionMismatchError(f"Input length {x.numel()} must equal n = {self.n}")
        return self._matvec(x.reshape(-1)).reshape(-1)

    def rmatvec(self, y: torch.Tensor) -> torch.Tensor:
        """Apply A^T to a vector of length m."""
        if y.numel() != self.m:
            raise DimensionMismatchError(f"Input length {y.numel()} must equal m = {self.m}")
        return self._rmatvec(y.reshape(-1)).reshape(-1)

    def __matmul__(self, x: torch.Tensor) -> torch.Tensor:
        return self.matvec(x)

    @property
    def T(self) -> "LinearOperator":
        return LinearOperator(self.n, self.m, self._rmatvec, self._matvec)

    def to_dense(self, dtype: Optional[torch.dtype] = None,
                 device: Optional[torch.device] = None) -> torch.Tensor:
        """
        Materialize the operator column by column.

        Costs n applications of A; meant for debugging small problems.
        """
        eye = torch.eye(self.n, dtype=dtype or torch.float64, device=device)
        cols = [self.matvec(eye[:, j]) for j in range(self.n)]
        if not cols:
            return torch.zeros(self.m, 0, dtype=eye.dtype, device=device)
        return torch.stack(cols, dim=1)

    def __repr__(self):
        return f"LinearOperator(m={self.m}, n={self.n})"


def num_examples(Y: torch.Tensor, n_feat: int) -> int:
    """
    Number of examples in a feature batch holding n_feat features each.

    Args:
        Y: features, any shape with numel divisible by n_feat
        n_feat: features per example

    Returns:
        nex = numel(Y) / n_feat
    """
    if n_feat <= 0 or Y.numel() % n_feat != 0:
        raise DimensionMismatchError(
            f"Feature count {Y.numel()} is not a multiple of nFeatIn = {n_feat}")
    return Y.numel() // n_feat


def as_batch(Y: torch.Tensor, n_feat: int) -> torch.Tensor:
    """Reshape features to [n_feat, nex]."""
    return Y.reshape(n_feat, num_examples(Y, n_feat))


def check_theta(theta: torch.Tensor, n_theta: int) -> torch.Tensor:
    """Flatten theta and make sure it has n_theta entries."""
    if theta.numel() != n_theta:
        raise DimensionMismatchError(f"theta has {theta.numel()} entries, expected nTheta = {n_theta}")
    return theta.reshape(-1)


def is_zero(x: Optional[torch.Tensor]) -> bool:
    """True for a missing, empty or exactly-zero perturbation."""
    return x is None or x.numel() == 0 or not bool(torch.any(x != 0))


def check_numel(x: torch.Tensor, expected: int, what: str) -> None:
    """Raise DimensionMismatchError unless x has exactly expected entries."""
    if x.numel() != expected:
        raise DimensionMismatchError(f"{what} has {x.numel()} entries, expected {expected}")
