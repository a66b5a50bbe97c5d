"""
jvpnet - network elements with hand-derived Jacobian actions

Every element (affine transform, layer, block) provides its forward map and
the action of its Jacobian, and of the transpose, w.r.t. its parameters
theta and its input features Y. These compose across nested elements and
are exposed as matrix-free linear operators for solvers and optimizers.

Core components:
- config: Configuration classes
- errors: Contract, configuration and dimension errors
- ops: LinearOperator and shape helpers
- solver: Conjugate gradient solver
- element: Element contract with default Jacobian algebra
- dense: Dense affine element
- layer: torch.nn.Module bridge
"""

from .config import CGConfig, ElementConfig
from .errors import ConfigurationError, ContractViolationError, DimensionMismatchError
from .ops import LinearOperator, as_batch, num_examples
from .solver import cg, solve_spd
from .element import Cache, Element, ElementOutput, LinearInFeaturesMixin
from .dense import Dense
from .layer import ElementLayer, element_apply

__version__ = "1.0.0"
__all__ = [
    "CGConfig", "ElementConfig",
    "ConfigurationError", "ContractViolationError", "DimensionMismatchError",
    "LinearOperator", "as_batch", "num_examples",
    "cg", "solve_spd",
    "Cache", "Element", "ElementOutput", "LinearInFeaturesMixin",
    "Dense",
    "ElementLayer", "element_apply",
]
