"""
ElementLayer: exposes any element as a torch.nn.Module.

The forward pass calls element.apply; the backward pass calls the element's
hand-derived adjoint jt_mv instead of tracing apply with autograd.
"""

import torch
import torch.nn as nn
from typing import Optional

from .element import Element
from .ops import check_theta


class _ElementFunction(torch.autograd.Function):

    @staticmethod
    def forward(ctx, theta: torch.Tensor, Y: torch.Tensor, element: Element) -> torch.Tensor:
        Z, _, tmp = element.apply(theta, Y)
        ctx.element = element
        ctx.tmp = tmp
        ctx.save_for_backward(theta, Y)
        return Z

    @staticmethod
    def backward(ctx, grad_Z: torch.Tensor):
        theta, Y = ctx.saved_tensors
        need_theta, need_Y = ctx.needs_input_grad[:2]
        dtheta, dY = ctx.element.jt_mv(grad_Z.contiguous(), theta, Y, ctx.tmp, with_y=need_Y)
        return (dtheta if need_theta else None), dY, None


def element_apply(element: Element, theta: torch.Tensor, Y: torch.Tensor) -> torch.Tensor:
    """Differentiable element.apply(theta, Y)[0] for use inside autograd graphs."""
    return _ElementFunction.apply(theta, Y, element)


class ElementLayer(nn.Module):
    """
    Holds an element and its parameter vector theta as an nn.Parameter.

    Features follow the element convention: Y is [nFeatIn, nex] and the
    output is [nFeatOut, nex].
    """

    def __init__(self, element: Element, theta: Optional[torch.Tensor] = None):
        super().__init__()
        self.element = element
        if theta is None:
            theta = element.init_theta()
        theta = check_theta(theta.detach().clone(), element.n_theta())
        self.theta = nn.Parameter(theta)

    def forward(self, Y: torch.Tensor) -> torch.Tensor:
        """
        Args:
            Y: [nFeatIn, nex] input features

        Returns:
            [nFeatOut, nex] output features
        """
        return element_apply(self.element, self.theta, Y)

    def extra_repr(self) -> str:
        return f"element={self.element!r}"
