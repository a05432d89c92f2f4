"""
Domain classification and interface extraction on the Cartesian grid.

This module provides helpers to:
- represent the set of grid points solved on a step as an explicit index set
- classify grid points by phase from the sign of the level set Phi
- locate sub grid interface crossings along grid lines
- compute level set normals and curvature

Notes
- Arrays are shaped (Nx, Ny) with indexing="ij", so [i, j] is (x_i, y_j).
- Phase convention: Phi < 0 is the u phase, Phi >= 0 is the v phase.
- Outer edge points are never active; they are closed by Neumann copies.
"""

from dataclasses import dataclass

import numpy as np
from scipy import ndimage

from parameter_tools import Params


# 4-connected neighbour offsets as (axis, direction)
NEIGHBOURS = ((0, -1), (0, +1), (1, -1), (1, +1))


@dataclass(frozen=True)
class ActiveDomain:
    """
    Ordered set of active grid points, stored as parallel index arrays.

    Position k in the set refers to grid point (ix[k], iy[k]). The order is
    grid-major (C order over (i, j)) and is the single source of truth used to
    flatten fields to vectors and to rebuild matrices from vectors.
    """

    ix: np.ndarray
    iy: np.ndarray
    shape: tuple[int, int]

    @classmethod
    def from_mask(cls, mask: np.ndarray) -> "ActiveDomain":
        ix, iy = np.nonzero(mask)
        return cls(ix.astype(np.intp), iy.astype(np.intp), tuple(mask.shape))

    def __len__(self) -> int:
        return int(self.ix.size)

    @property
    def mask(self) -> np.ndarray:
        m = np.zeros(self.shape, dtype=bool)
        m[self.ix, self.iy] = True
        return m

    @property
    def lookup(self) -> np.ndarray:
        """Grid sized integer map from grid point to position in the set (-1 if absent)."""
        lk = np.full(self.shape, -1, dtype=np.intp)
        lk[self.ix, self.iy] = np.arange(len(self), dtype=np.intp)
        return lk

    def gather(self, U: np.ndarray) -> np.ndarray:
        """Flatten a grid field to a vector ordered by the set."""
        U = np.asarray(U, dtype=float)
        if U.shape != self.shape:
            raise ValueError(f"Field shape {U.shape} does not match domain shape {self.shape}.")
        return U[self.ix, self.iy].copy()

    def scatter(self, u: np.ndarray, base: np.ndarray | None = None) -> np.ndarray:
        """
        Rebuild a grid field from a vector ordered by the set.

        Points outside the set take their value from base (zeros if base is None).
        """
        u = np.asarray(u, dtype=float).reshape(-1)
        if u.size != len(self):
            raise ValueError(f"Vector length {u.size} does not match domain size {len(self)}.")
        if base is None:
            out = np.zeros(self.shape)
        else:
            out = np.array(base, dtype=float, copy=True)
            if out.shape != self.shape:
                raise ValueError(f"Base shape {out.shape} does not match domain shape {self.shape}.")
        out[self.ix, self.iy] = u
        return out


@dataclass(frozen=True)
class InterfaceSet:
    """
    Interface crossings seen from active points.

    One entry per (active point, axis, direction) whose neighbour lies in the
    other phase. theta is the crossing distance from the active point as a
    fraction of the grid spacing along that axis.
    """

    point: np.ndarray  # position in the ActiveDomain
    ix: np.ndarray
    iy: np.ndarray
    jx: np.ndarray  # neighbour grid indices
    jy: np.ndarray
    axis: np.ndarray
    direction: np.ndarray
    theta: np.ndarray
    x: np.ndarray
    y: np.ndarray

    def __len__(self) -> int:
        return int(self.point.size)

    @property
    def points(self) -> np.ndarray:
        """Unique active positions adjacent to the interface."""
        return np.unique(self.point)


def _check_phi(par: Params, phi: np.ndarray) -> np.ndarray:
    phi = np.asarray(phi, dtype=float)
    if phi.shape != (par.Nx, par.Ny):
        raise ValueError(f"Phi must have shape {(par.Nx, par.Ny)}, got {phi.shape}.")
    return phi


def find_domain(par: Params, phi: np.ndarray, phase: int | None = None, band: int = 1) -> ActiveDomain:
    """
    Classify grid points and build the ordered active set.

    Parameters
    par
        Run parameters.
    phi
        Level set field, shape (Nx, Ny).
    phase
        None keeps every interior point (both phases are solved). -1 or +1 keeps
        that phase plus points of the other phase within band grid steps.
    band
        Ghost band width in grid steps for single phase classification.

    Returns
    D
        ActiveDomain in grid-major order.
    """
    phi = _check_phi(par, phi)

    interior = np.zeros(phi.shape, dtype=bool)
    interior[1:-1, 1:-1] = True
    if phase is None:
        return ActiveDomain.from_mask(interior)

    if phase not in (-1, 1):
        raise ValueError("phase must be None, -1 or +1.")
    own = phi < 0.0 if phase < 0 else phi >= 0.0
    if band > 0:
        cross = ndimage.generate_binary_structure(2, 1)
        own = ndimage.binary_dilation(own, structure=cross, iterations=int(band))
    return ActiveDomain.from_mask(interior & own)


def find_interface(par: Params, D: ActiveDomain, phi: np.ndarray) -> InterfaceSet:
    """
    Locate sub grid crossings of the zero level set next to active points.

    The crossing between a point p and a neighbour q of the other phase is
    theta = phi_p / (phi_p - phi_q), clamped to [0, 1]. Entries whose fraction
    is not finite are dropped instead of propagated.
    """
    phi = _check_phi(par, phi)
    if D.shape != phi.shape:
        raise ValueError("Domain and Phi shapes differ.")

    Nx, Ny = phi.shape
    k_all = np.arange(len(D), dtype=np.intp)
    side_p = phi[D.ix, D.iy] >= 0.0
    h = (par.dx, par.dy)

    parts = []
    for axis, direction in NEIGHBOURS:
        jx = D.ix + direction * (axis == 0)
        jy = D.iy + direction * (axis == 1)
        inside = (jx >= 0) & (jx < Nx) & (jy >= 0) & (jy < Ny)
        jx_c, jy_c = np.clip(jx, 0, Nx - 1), np.clip(jy, 0, Ny - 1)
        phi_p = phi[D.ix, D.iy]
        phi_q = phi[jx_c, jy_c]
        cut = inside & (side_p != (phi_q >= 0.0))

        with np.errstate(divide="ignore", invalid="ignore"):
            theta = phi_p / (phi_p - phi_q)
        cut &= np.isfinite(theta)
        if not np.any(cut):
            continue
        theta = np.clip(theta[cut], 0.0, 1.0)
        parts.append((k_all[cut], jx[cut], jy[cut], axis, direction, theta))

    if not parts:
        empty_i = np.zeros(0, dtype=np.intp)
        empty_f = np.zeros(0)
        return InterfaceSet(empty_i, empty_i, empty_i, empty_i, empty_i, empty_i, empty_i, empty_f, empty_f, empty_f)

    point = np.concatenate([p[0] for p in parts])
    jx = np.concatenate([p[1] for p in parts])
    jy = np.concatenate([p[2] for p in parts])
    axis = np.concatenate([np.full(p[0].size, p[3], dtype=np.intp) for p in parts])
    direction = np.concatenate([np.full(p[0].size, p[4], dtype=np.intp) for p in parts])
    theta = np.concatenate([p[5] for p in parts])

    # Keep the grid-major order of the active set; ties sorted by neighbour slot
    order = np.lexsort((direction, axis, point))
    point, jx, jy, axis, direction, theta = (a[order] for a in (point, jx, jy, axis, direction, theta))
    ix, iy = D.ix[point], D.iy[point]

    x = ix * h[0] + np.where(axis == 0, direction * theta * h[0], 0.0)
    y = iy * h[1] + np.where(axis == 1, direction * theta * h[1], 0.0)
    return InterfaceSet(point, ix, iy, jx, jy, axis, direction, theta, x, y)


def normals(phi: np.ndarray, dx: float, dy: float, tiny: float = 1e-12) -> tuple[np.ndarray, np.ndarray]:
    """Unit normals grad(Phi)/|grad(Phi)| from central differences (one sided at the edges)."""
    phi = np.asarray(phi, dtype=float)
    px, py = np.gradient(phi, dx, dy)
    norm = np.maximum(np.hypot(px, py), tiny)
    return px / norm, py / norm


def curvature(phi: np.ndarray, dx: float, dy: float, tiny: float = 1e-12) -> np.ndarray:
    """
    Mean curvature div(grad(Phi)/|grad(Phi)|) of the level sets of Phi.

    Uses the standard second order central formula and clips the result to
    the largest curvature the grid can resolve, 1 / min(dx, dy).
    """
    phi = np.asarray(phi, dtype=float)
    px, py = np.gradient(phi, dx, dy)
    pxx = np.gradient(px, dx, axis=0)
    pyy = np.gradient(py, dy, axis=1)
    pxy = np.gradient(px, dy, axis=1)

    g2 = px * px + py * py
    kappa = (pxx * py * py - 2.0 * px * py * pxy + pyy * px * px) / np.maximum(g2, tiny) ** 1.5
    kmax = 1.0 / min(dx, dy)
    return np.clip(kappa, -kmax, kmax)
