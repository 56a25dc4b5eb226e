# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
Linear and nonlinear solvers for fusion-jit.

This module implements the iterative solvers that operate on the graph
structures in `core.factor_graph` (nonlinear) and `optimization.linear`
(linearized). None of them ever assembles a dense or sparse matrix: the
only access to the problem is through ``error``, ``linearized``,
``apply_forward`` and ``apply_adjoint``.

Key Concepts
------------
CGLSConfig / CGLS
    Matrix-free conjugate gradient on the normal equations (Björck's CGLS)
    for ``min ‖A Δ + b‖²``:

        r = -(A Δ₀ + b),  s = p = Aᵀ r,  γ = ‖s‖²
        repeat:
            q = A p,   α = γ / ‖q‖²
            Δ += α p,  r -= α q
            s = Aᵀ r,  β = ‖s‖² / γ,  p = s + β p

    Stops when ‖α p‖² or γ drops below ``precision``, or after
    ``max_iters`` steps. Exhaustion is silent; ``converged`` and ``step``
    record what happened.

LMConfig / LevenbergMarquardt
    Damped Gauss–Newton on a `FactorGraph`. Each outer iteration linearizes
    the graph, then searches for a damping λ whose step actually reduces
    the error:

        damped = linear + sqrt(λ) I          (scalar Jacobian factors)
        Δ      = CGLS(damped)
        ρ      = (e_old - e_new) / (½‖b‖² - ½‖A_λ Δ + b_λ‖²)

    A step is accepted when the error drops and ρ > 0.01, after which λ
    shrinks by ``lambda_factor``; otherwise the step is rolled back and λ
    grows. λ above ``max_lambda`` raises `LevenbergMarquardtError`.

GDConfig / GradientDescent
    Fixed-step descent along ``-Aᵀ b`` with retraction.

NLCGConfig / NonlinearConjugateGradient
    Fletcher–Reeves directions with a backtracking (Armijo) line search
    along the retraction.

Logging
-------
Solvers log through the module logger. LM's ``verbosity`` selects how much
is emitted (``SUMMARY``: one line per outer step; ``TRYLAMBDA``: one line
per damping trial) and never changes control flow.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

from fusion_jit.core.factor_graph import FactorGraph
from fusion_jit.core.variables import VariableAssignments
from fusion_jit.core.vectors import VectorBlocks
from fusion_jit.optimization.linear import GaussianFactorGraph

logger = logging.getLogger(__name__)


class LevenbergMarquardtError(RuntimeError):
    """Raised when the damping search gives up."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Verbosity(enum.IntEnum):
    SILENT = 0
    SUMMARY = 1
    TRYLAMBDA = 2


@dataclass
class OptimizationSummary:
    converged: bool = False
    iterations: int = 0
    final_error: float = float("nan")
    error_history: List[float] = field(default_factory=list)


@dataclass
class LMSummary(OptimizationSummary):
    inner_iterations: int = 0
    final_lambda: float = float("nan")


# ---------------------------------------------------------------------------
# CGLS
# ---------------------------------------------------------------------------

@dataclass
class CGLSConfig:
    precision: float = 1e-10
    max_iters: int = 400


class CGLS:
    """Conjugate gradient least squares on a `GaussianFactorGraph`."""

    def __init__(self, config: Optional[CGLSConfig] = None):
        self.config = config or CGLSConfig()
        self.step = 0
        self.converged = False

    def optimize(self, gfg: GaussianFactorGraph, initial: VectorBlocks) -> VectorBlocks:
        """Return Δ approximately minimizing ‖A Δ + b‖², starting at ``initial``."""
        cfg = self.config
        x = initial
        r = -gfg.error_vectors(x)
        s = gfg.apply_adjoint(r)
        p = s
        gamma = s.squared_norm()

        self.step = 0
        self.converged = False
        while self.step < cfg.max_iters:
            if gamma <= cfg.precision:
                self.converged = True
                break
            q = gfg.apply_forward(p)
            q_norm2 = q.squared_norm()
            if q_norm2 == 0.0:
                self.converged = True
                break
            alpha = gamma / q_norm2
            x = x + alpha * p
            r = r - alpha * q
            s = gfg.apply_adjoint(r)
            gamma_new = s.squared_norm()
            step_norm2 = alpha * alpha * p.squared_norm()
            p = s + (gamma_new / gamma) * p
            gamma = gamma_new
            self.step += 1
            if step_norm2 < cfg.precision:
                self.converged = True
                break

        logger.debug("CGLS finished after %d steps (converged=%s)", self.step, self.converged)
        return x


# ---------------------------------------------------------------------------
# Levenberg–Marquardt
# ---------------------------------------------------------------------------

@dataclass
class LMConfig:
    precision: float = 1e-10
    max_iters: int = 50              # outer (linearization) steps
    max_inner_iters: int = 400       # damping trials per outer step
    initial_lambda: float = 1e-4
    min_lambda: float = 1e-16
    max_lambda: float = 1e32
    lambda_factor: float = 2.0
    verbosity: Verbosity = Verbosity.SILENT
    cgls: CGLSConfig = field(default_factory=CGLSConfig)


class LevenbergMarquardt:
    """Levenberg–Marquardt over a `FactorGraph`, updating assignments in place."""

    def __init__(self, config: Optional[LMConfig] = None):
        self.config = config or LMConfig()

    def _log(self, level: Verbosity, msg: str, *args) -> None:
        if self.config.verbosity >= level:
            logger.info(msg, *args)

    def optimize(self, graph: FactorGraph, values: VariableAssignments) -> LMSummary:
        cfg = self.config
        lam = cfg.initial_lambda
        error = graph.error(values)
        summary = LMSummary(error_history=[error])
        self._log(Verbosity.SUMMARY, "[LM] initial error = %.6e", error)

        for _ in range(cfg.max_iters):
            if error < cfg.precision:
                summary.converged = True
                break

            linear = graph.linearized(values)
            bias = linear.bias()
            if linear.apply_adjoint(bias).squared_norm() < cfg.precision:
                summary.converged = True
                break
            linear_error = 0.5 * bias.squared_norm()

            summary.iterations += 1
            self._log(Verbosity.SUMMARY, "[LM] step %d, error = %.6e, lambda = %.3e",
                      summary.iterations, error, lam)

            for _ in range(cfg.max_inner_iters):
                summary.inner_iterations += 1
                damped = linear.copy()
                damped.add_scalar_jacobians(math.sqrt(lam))
                delta = CGLS(cfg.cgls).optimize(damped, damped.tangent_zeros())

                backup = values.copy()
                values.move(delta)
                new_error = graph.error(values)
                delta_error = error - new_error
                delta_linear = linear_error - damped.error(delta)
                rho = delta_error / delta_linear if delta_linear > 0.0 else 0.0

                self._log(Verbosity.TRYLAMBDA,
                          "[LM] lambda = %.3e, error = %.6e, delta = %.3e, fidelity = %.3f",
                          lam, new_error, delta_error, rho)

                if math.isfinite(new_error) and delta_error > 0.0 and rho > 0.01:
                    error = new_error
                    summary.error_history.append(error)
                    lam = max(lam / cfg.lambda_factor, cfg.min_lambda)
                    if (rho > 0.5 and delta_error < cfg.precision) or error < cfg.precision:
                        summary.converged = True
                    break

                values.assign(backup)
                lam = lam * cfg.lambda_factor
                if lam > cfg.max_lambda:
                    self._log(Verbosity.SUMMARY, "[LM] giving up in lambda search")
                    raise LevenbergMarquardtError(
                        f"damping exceeded {cfg.max_lambda:.1e} without reducing the error "
                        f"(error = {error:.6e})"
                    )

            if summary.converged:
                break

        summary.final_error = error
        summary.final_lambda = lam
        self._log(Verbosity.SUMMARY, "[LM] final error = %.6e after %d steps (converged=%s)",
                  error, summary.iterations, summary.converged)
        return summary


# ---------------------------------------------------------------------------
# First-order methods
# ---------------------------------------------------------------------------

@dataclass
class GDConfig:
    learning_rate: float = 1e-1
    max_iters: int = 200
    precision: float = 1e-10


class GradientDescent:
    """Very simple gradient descent along the retraction."""

    def __init__(self, config: Optional[GDConfig] = None):
        self.config = config or GDConfig()

    def update(self, graph: FactorGraph, values: VariableAssignments) -> None:
        gradient = graph.error_gradient(values)
        values.move(-self.config.learning_rate * gradient)

    def optimize(self, graph: FactorGraph, values: VariableAssignments) -> OptimizationSummary:
        cfg = self.config
        error = graph.error(values)
        summary = OptimizationSummary(error_history=[error])
        for _ in range(cfg.max_iters):
            if error < cfg.precision:
                summary.converged = True
                break
            self.update(graph, values)
            error = graph.error(values)
            summary.iterations += 1
            summary.error_history.append(error)
        summary.final_error = error
        return summary


@dataclass
class NLCGConfig:
    max_iters: int = 200
    precision: float = 1e-10
    initial_step: float = 1.0
    shrink: float = 0.5
    armijo: float = 1e-4
    max_line_search: int = 40


class NonlinearConjugateGradient:
    """Fletcher–Reeves nonlinear conjugate gradient with backtracking."""

    def __init__(self, config: Optional[NLCGConfig] = None):
        self.config = config or NLCGConfig()

    def _line_search(self, graph, values, error, gradient, direction) -> Optional[float]:
        cfg = self.config
        slope = gradient.dot(direction)
        step = cfg.initial_step
        for _ in range(cfg.max_line_search):
            trial = graph.error(values.moved(step * direction))
            if math.isfinite(trial) and trial <= error + cfg.armijo * step * slope:
                return step
            step *= cfg.shrink
        return None

    def optimize(self, graph: FactorGraph, values: VariableAssignments) -> OptimizationSummary:
        cfg = self.config
        error = graph.error(values)
        summary = OptimizationSummary(error_history=[error])

        gradient = graph.error_gradient(values)
        direction = -gradient
        steepest = True
        for _ in range(cfg.max_iters):
            g_norm2 = gradient.squared_norm()
            if error < cfg.precision or g_norm2 < cfg.precision:
                summary.converged = True
                break

            step = self._line_search(graph, values, error, gradient, direction)
            if step is None:
                if steepest:
                    logger.info("NLCG line search failed along steepest descent, stopping")
                    break
                # restart from steepest descent
                direction = -gradient
                steepest = True
                continue

            values.move(step * direction)
            error = graph.error(values)
            summary.iterations += 1
            summary.error_history.append(error)

            new_gradient = graph.error_gradient(values)
            beta = new_gradient.squared_norm() / g_norm2
            direction = beta * direction - new_gradient
            steepest = False
            if new_gradient.dot(direction) >= 0.0:
                direction = -new_gradient
                steepest = True
            gradient = new_gradient

        summary.final_error = error
        return summary
