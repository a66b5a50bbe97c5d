"""
Configuration classes for elements and the conjugate gradient solver.
"""

from dataclasses import dataclass
from typing import Union

import torch

from .errors import ConfigurationError

_PRECISIONS = {"single": torch.float32, "double": torch.float64}


@dataclass
class CGConfig:
    """Configuration for Conjugate Gradient solver."""
    tol: float = 1e-6
    maxiter: int = 2000
    verbose: bool = False
    jitter: float = 0.0  # Numerical jitter for stability

    def __post_init__(self):
        if self.tol <= 0:
            raise ConfigurationError(f"tol must be positive, got {self.tol}")
        if self.maxiter < 1:
            raise ConfigurationError(f"maxiter must be at least 1, got {self.maxiter}")


def _check_use_gpu(value) -> bool:
    # accepts True/False and 0/1, nothing else
    if isinstance(value, (bool, int, float)) and value in (0, 1):
        return bool(value)
    raise ConfigurationError("use_gpu must be 0 or 1.")


def _check_precision(value) -> str:
    if value not in _PRECISIONS:
        raise ConfigurationError("precision must be single or double.")
    return value


def _check_Q(value):
    if isinstance(value, torch.Tensor):
        if value.dim() != 2:
            raise ConfigurationError(f"Q must be a 2-D basis matrix, got shape {tuple(value.shape)}")
        return value
    if isinstance(value, (int, float)) and value == 1.0:
        return 1.0
    raise ConfigurationError("Q must be the identity scalar 1.0 or a 2-D tensor.")


_VALIDATORS = {
    "Q": _check_Q,
    "use_gpu": _check_use_gpu,
    "precision": _check_precision,
}


@dataclass
class ElementConfig:
    """
    Options shared by parameterized elements.

    Every assignment is validated; an invalid value raises
    ``ConfigurationError`` and leaves the previous value in place.

    Attributes:
        Q: reduction matrix [prod(nK), nTheta], or 1.0 for no reduction
        use_gpu: place tensors on the CUDA device
        precision: 'single' or 'double'
    """
    Q: Union[float, torch.Tensor] = 1.0
    use_gpu: bool = False
    precision: str = "double"

    def __setattr__(self, name, value):
        if name in _VALIDATORS:
            value = _VALIDATORS[name](value)
        super().__setattr__(name, value)

    @property
    def dtype(self) -> torch.dtype:
        return _PRECISIONS[self.precision]

    @property
    def device(self) -> torch.device:
        return torch.device("cuda" if self.use_gpu else "cpu")

    @property
    def has_reduction(self) -> bool:
        return isinstance(self.Q, torch.Tensor)
