"""
Reaction-diffusion (Fisher-KPP) update on the irregular two-phase domain.

The density U holds u on the Phi < 0 phase and v on the Phi >= 0 phase. Each
phase diffuses and reacts with its own coefficients, and both see the same
Dirichlet value on the interface. Stencils cut by the interface use the sub
grid crossing distance and the interface value in place of the missing
neighbour; the outer edges carry zero flux.
"""

import time

import numpy as np
from scipy import sparse
from scipy.integrate import solve_ivp

from domain_tools import ActiveDomain, InterfaceSet, curvature
from parameter_tools import Params


IMPLICIT_METHODS = ("Radau", "BDF")


def interface_density(
    dOmega: InterfaceSet,
    phi: np.ndarray,
    par: Params,
    dx: float,
    dy: float,
) -> float | np.ndarray:
    """
    Dirichlet density on the interface from the Gibbs-Thomson condition.

    u_I = uf - gamma * kappa_I, where kappa_I is the level set curvature
    interpolated linearly between the two grid points that bracket each
    crossing.

    Returns
    uI
        The background value par.uf when there is no crossing or no surface
        tension, otherwise an array aligned with dOmega.
    """
    if len(dOmega) == 0 or par.gamma == 0.0:
        return float(par.uf)

    kappa = curvature(phi, dx, dy)
    k_p = kappa[dOmega.ix, dOmega.iy]
    k_q = kappa[dOmega.jx, dOmega.jy]
    kappa_I = (1.0 - dOmega.theta) * k_p + dOmega.theta * k_q
    return par.uf - par.gamma * kappa_I


def apply_neumann(U: np.ndarray) -> np.ndarray:
    """Zero normal derivative on the outer edges: copy the nearest interior row, then column."""
    U[0, :] = U[1, :]
    U[-1, :] = U[-2, :]
    U[:, 0] = U[:, 1]
    U[:, -1] = U[:, -2]
    return U


def cut_stencil(D: ActiveDomain, dOmega: InterfaceSet, uI: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Per active point and neighbour slot (axis, side): crossing fraction, interface value and cut flag.

    Arrays are shaped (2, 2, n); side 0 is the minus neighbour, side 1 the plus neighbour.
    """
    n = len(D)
    frac = np.ones((2, 2, n))
    val = np.zeros((2, 2, n))
    cut = np.zeros((2, 2, n), dtype=bool)
    if len(dOmega):
        side = (dOmega.direction > 0).astype(np.intp)
        frac[dOmega.axis, side, dOmega.point] = dOmega.theta
        val[dOmega.axis, side, dOmega.point] = uI
        cut[dOmega.axis, side, dOmega.point] = True
    return frac, val, cut


def pinned_points(D: ActiveDomain, dOmega: InterfaceSet, uI, par: Params) -> tuple[np.ndarray, np.ndarray]:
    """
    Active points that lie on the interface for all practical purposes.

    A point is pinned when one of its crossings is closer than theta_b grid
    spacings. Its value is the interface value of its closest crossing.
    """
    uI = np.broadcast_to(np.asarray(uI, dtype=float), (len(dOmega),))
    frac, val, cut = cut_stencil(D, dOmega, uI)
    frac = np.where(cut, frac, np.inf).reshape(4, -1)
    closest = np.argmin(frac, axis=0)
    cols = np.arange(frac.shape[1])
    pinned = frac[closest, cols] < par.theta_b
    return pinned, val.reshape(4, -1)[closest, cols]


def assemble_operator(
    D: ActiveDomain,
    dOmega: InterfaceSet,
    phi: np.ndarray,
    uI,
    par: Params,
) -> tuple[sparse.csr_matrix, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Build the linear diffusion operator on the active set.

    Along each axis the second derivative at point p is
      2 / (hm + hp) * ((u_plus - u_p) / hp + (u_minus - u_p) / hm)
    where a side cut by the interface uses hm or hp = theta * h and the
    interface value u_I, and an uncut side uses the grid neighbour. An uncut
    neighbour outside the set (outer edge) contributes no flux.

    Returns
    A, b
        Sparse operator and interface source so that diffusion = A @ u + b.
    lam
        Reaction rate per active point (zero on pinned points).
    pinned, pin_value
        Pinned mask and the value each pinned point is held at.
    """
    n = len(D)
    uI = np.broadcast_to(np.asarray(uI, dtype=float), (len(dOmega),))
    frac, val, cut = cut_stencil(D, dOmega, uI)
    pinned, pin_value = pinned_points(D, dOmega, uI, par)

    v_phase = phi[D.ix, D.iy] >= 0.0
    diff = np.where(v_phase, par.Dv, par.Du)
    lam = np.where(v_phase, par.lam_v, par.lam_u)
    lam = np.where(pinned, 0.0, lam)

    lookup = D.lookup
    k = np.arange(n, dtype=np.intp)
    rows, cols, vals = [], [], []
    b = np.zeros(n)

    for axis, h in ((0, par.dx), (1, par.dy)):
        hm = frac[axis, 0] * h
        hp = frac[axis, 1] * h
        # Zero length cuts only occur on pinned points, which are masked out below
        with np.errstate(divide="ignore", invalid="ignore"):
            c = 2.0 * diff / (hm + hp)
        for side, hs, step in ((0, hm, -1), (1, hp, +1)):
            jx = D.ix + step * (axis == 0)
            jy = D.iy + step * (axis == 1)
            q = lookup[jx, jy]
            with np.errstate(divide="ignore", invalid="ignore"):
                w = c / hs
            is_cut = cut[axis, side] & ~pinned
            regular = ~cut[axis, side] & (q >= 0) & ~pinned

            rows += [k[regular], k[regular], k[is_cut]]
            cols += [q[regular], k[regular], k[is_cut]]
            vals += [w[regular], -w[regular], -w[is_cut]]
            b[is_cut] += w[is_cut] * val[axis, side][is_cut]

    A = sparse.coo_matrix(
        (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))), shape=(n, n)
    ).tocsr()
    return A, b, lam, pinned, pin_value


def fkpp(
    D: ActiveDomain,
    dOmega: InterfaceSet,
    U: np.ndarray,
    phi: np.ndarray,
    uf,
    par: Params,
    dt: float,
    verbose: bool = False,
) -> np.ndarray:
    """
    Advance the density one time step: U_t = D Lap(U) + lam U (1 - U) on the active set.

    The method of lines system is integrated over [0, dt] with solve_ivp. The
    implicit methods receive the analytic sparse Jacobian A + diag(lam (1 - 2u)).
    dt is a caller precondition; unphysical densities from an under resolved
    step are not detected here.
    The two point diffusive fluxes need no limiter; par.theta is consumed by
    the level set advection (levelset_tools.level_set).

    Parameters
    D, dOmega
        Active set and interface crossings of the current level set.
    U
        Density field, shape (Nx, Ny).
    phi
        Level set field, shape (Nx, Ny).
    uf
        Interface density, scalar or aligned with dOmega (see interface_density).
    par
        Run parameters (coefficients, solver method and tolerances).
    dt
        Time step.

    Returns
    U_new
        Updated density with Neumann closure on the outer edges.
    """
    U = np.asarray(U, dtype=float)
    phi = np.asarray(phi, dtype=float)
    if U.shape != D.shape or phi.shape != D.shape:
        raise ValueError("U, Phi and the active domain must share the grid shape.")
    if not np.isfinite(dt) or dt <= 0.0:
        raise ValueError("dt must be positive and finite.")

    t0 = time.perf_counter()
    A, b, lam, pinned, pin_value = assemble_operator(D, dOmega, phi, uf, par)

    u0 = D.gather(U)
    u0[pinned] = pin_value[pinned]

    def rhs(_t, u):
        return A @ u + b + lam * u * (1.0 - u)

    def jac(_t, u):
        return (A + sparse.diags(lam * (1.0 - 2.0 * u))).tocsc()

    options = dict(rtol=par.rtol, atol=par.atol)
    if par.ode_method in IMPLICIT_METHODS:
        options["jac"] = jac
    sol = solve_ivp(rhs, (0.0, float(dt)), u0, method=par.ode_method, **options)
    if not sol.success:
        raise RuntimeError(f"FKPP integration failed: {sol.message}")

    U_new = D.scatter(sol.y[:, -1], base=U)
    apply_neumann(U_new)

    if verbose:
        print(f"[fkpp] n={len(D)}, crossings={len(dOmega)}, pinned={int(pinned.sum())}, "
              f"rhs evals={sol.nfev}, {time.perf_counter() - t0:.2f} s")
    return U_new
