# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
fusion-jit: manifold-aware nonlinear least squares in JAX.

Importing the package switches JAX to 64-bit floats. Pose graphs are
solved to error thresholds around 1e-10, which single precision cannot
represent.
"""

import jax

jax.config.update("jax_enable_x64", True)

__version__ = "0.1.0"
