"""
Solvers for the symmetric positive definite systems met in implicit steps.

cg() is matrix-free and only needs a matvec; solve_spd() applies it to
every column of a right-hand-side block [n, k].
"""

import logging
from typing import Callable, Dict, Tuple

import torch

from .config import CGConfig

logger = logging.getLogger(__name__)


def cg(matvec_func: Callable, b: torch.Tensor, x0: torch.Tensor,
       tol: float = 1e-6, maxiter: int = 2000, verbose: bool = False) -> Tuple[torch.Tensor, Dict]:
    """
    Conjugate gradient for A x = b with A symmetric positive definite.

    The squared residual norm is carried between iterations, so each step
    costs one matvec and two dot products.

    Args:
        matvec_func: function that computes A·x
        b: [n] right-hand side vector
        x0: [n] initial guess
        tol: relative residual tolerance
        maxiter: maximum number of iterations
        verbose: log progress at INFO level

    Returns:
        (x, info) with info = {"iters": int, "relres": float, "converged": bool}
    """
    b_norm = torch.linalg.vector_norm(b)
    if b_norm < 1e-14:
        return torch.zeros_like(b), {"iters": 0, "relres": 0.0, "converged": True}

    x = x0.clone()
    r = b - matvec_func(x)
    p = r.clone()
    rr = torch.dot(r, r)
    stop = (tol * b_norm) ** 2

    if verbose:
        logger.info("CG: iter 0, relres = %.2e", rr.sqrt() / b_norm)

    k = 0
    while rr > stop and k < maxiter:
        Ap = matvec_func(p)
        pAp = torch.dot(p, Ap)
        if pAp <= 0:
            logger.warning("CG: p^T A p = %.2e <= 0 at iter %d", pAp, k)
            break
        alpha = rr / pAp
        x = x + alpha * p
        r = r - alpha * Ap
        rr_new = torch.dot(r, r)
        p = r + (rr_new / rr) * p
        rr = rr_new
        k += 1
        if verbose and k % 100 == 0:
            logger.info("CG: iter %d, relres = %.2e", k, rr.sqrt() / b_norm)

    relres = (rr.sqrt() / b_norm).item()
    converged = bool(rr <= stop)
    if not converged:
        logger.warning("CG: did not converge after %d iterations, final relres = %.2e", k, relres)
    elif verbose:
        logger.info("CG: converged in %d iterations, final relres = %.2e", k, relres)
    return x, {"iters": k, "relres": relres, "converged": converged}


def solve_spd(matvec_func: Callable, B: torch.Tensor,
              cg_config: CGConfig) -> Tuple[torch.Tensor, Dict]:
    """
    Solve A X = B for an SPD operator, one column of B at a time.

    Args:
        matvec_func: function that computes A·x for x of shape [n]
        B: [n, k] right-hand sides
        cg_config: CG configuration

    Returns:
        (X, info) with X of shape [n, k]; info aggregates per-column details
    """
    x_list = []
    info_list = []

    for j in range(B.shape[1]):
        def A_mv(z):
            Az = matvec_func(z)
            if cg_config.jitter != 0.0:
                Az = Az + cg_config.jitter * z
            return Az

        x0 = torch.zeros_like(B[:, j])
        xj, infoj = cg(A_mv, B[:, j], x0,
                       tol=cg_config.tol, maxiter=cg_config.maxiter,
                       verbose=cg_config.verbose)
        x_list.append(xj)
        info_list.append(infoj)

    X = torch.stack(x_list, dim=1) if x_list else torch.zeros_like(B)

    info = {
        "iters": [inf["iters"] for inf in info_list],
        "relres": [inf["relres"] for inf in info_list],
        "converged": [inf["converged"] for inf in info_list],
    }
    return X, info
