"""
Model and numerical parameters for the two-phase Fisher-Stefan level set solver.

A single immutable Params record is built once per run and passed explicitly to
every stage of the time stepping pipeline.
"""

from dataclasses import dataclass, fields

import numpy as np


@dataclass(frozen=True)
class Params:
    """Dimensionless model parameters and numerical settings."""

    Du: float = 1.0  # diffusion coefficient (u)
    lam_u: float = 1.0  # reaction rate (u)
    kappa_u: float = 0.2  # inverse Stefan number (u)
    Dv: float = 1.0  # diffusion coefficient (v)
    lam_v: float = 1.0  # reaction rate (v)
    kappa_v: float = 0.1  # inverse Stefan number (v)
    alpha_u: float = 1.0  # far field density (u)
    alpha_v: float = 1.0  # far field density (v)
    beta: float = 5.0  # initial interface position
    uf: float = 0.0  # background density at interface (u)
    vf: float = 0.0  # background density at interface (v), travelling wave only
    theta_b: float = 0.01  # near interface threshold, relative to grid spacing
    theta: float = 1.99  # generalised minmod parameter
    Lx: float = 10.0
    Ly: float = 10.0
    T: float = 1.0
    Nx: int = 301
    Ny: int = 301
    Nt: int = 101
    Nz: int = 201  # travelling wave samples per phase
    V_iterations: int = 20
    phi_iterations: int = 20
    gamma: float = 0.0  # surface tension coefficient
    eps: float = 0.1  # perturbation amplitude
    q: float = np.pi / 5.0  # perturbation wave number
    reinit_stride: int = 1
    output_stride: int = 100
    ode_method: str = "BDF"
    rtol: float = 1e-6
    atol: float = 1e-9

    def __post_init__(self):
        if min(self.Nx, self.Ny) < 3:
            raise ValueError("Nx and Ny must be >= 3.")
        if self.Nt < 2 or self.Nz < 3:
            raise ValueError("Nt must be >= 2 and Nz >= 3.")
        if not all(np.isfinite(v) and v > 0.0 for v in (self.Lx, self.Ly, self.T)):
            raise ValueError("Lx, Ly and T must be positive and finite.")
        if not 0.0 < self.beta < self.Lx:
            raise ValueError("beta must lie inside (0, Lx).")
        if min(self.Du, self.Dv) <= 0.0:
            raise ValueError("Diffusion coefficients must be positive.")
        if not 1.0 <= self.theta <= 2.0:
            raise ValueError("theta must lie in [1, 2].")
        if not 0.0 < self.theta_b < 1.0:
            raise ValueError("theta_b must lie in (0, 1).")
        if min(self.V_iterations, self.phi_iterations) < 0:
            raise ValueError("Iteration counts must be nonnegative.")
        if min(self.reinit_stride, self.output_stride) < 1:
            raise ValueError("reinit_stride and output_stride must be >= 1.")

    @property
    def dx(self) -> float:
        return self.Lx / (self.Nx - 1.0)

    @property
    def dy(self) -> float:
        return self.Ly / (self.Ny - 1.0)

    @property
    def dt(self) -> float:
        return self.T / (self.Nt - 1.0)

    def grid(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return the x, y and t sample vectors of the run."""
        x = np.linspace(0.0, self.Lx, self.Nx)
        y = np.linspace(0.0, self.Ly, self.Ny)
        t = np.linspace(0.0, self.T, self.Nt)
        return x, y, t

    @classmethod
    def field_types(cls) -> dict[str, type]:
        """Map every field name to its declared type (used by the input parser)."""
        return {f.name: f.type for f in fields(cls)}
