"""
Level set utilities for the moving Fisher-Stefan interface.

This module provides helpers to:
- compute upwind one sided differences, optionally second order with a generalised minmod limiter
- run fixed iteration pseudo time relaxations (shared by velocity extension and reinitialisation)
- compute the interface normal velocity from the Stefan condition and extend it off the interface
- advance Phi under the normal speed equation Phi_t + V |grad Phi| = 0
- restore Phi to a signed distance function without moving its zero contour

Notes
- Fields are shaped (Nx, Ny) with indexing="ij".
- Outer edges are closed with edge replicated ghost cells, i.e. zero normal derivative.
"""

from typing import Callable

import numpy as np

from domain_tools import ActiveDomain, InterfaceSet, normals
from fkpp_tools import cut_stencil, interface_density
from parameter_tools import Params


def generalised_minmod(a: np.ndarray, b: np.ndarray, theta: float) -> np.ndarray:
    """
    Generalised minmod limiter minmod(theta a, (a + b) / 2, theta b).

    theta = 1 is the classical minmod, theta = 2 the monotonised central limiter.
    """
    same = np.sign(a) * np.sign(b) > 0.0
    mag = np.minimum(np.minimum(theta * np.abs(a), 0.5 * np.abs(a + b)), theta * np.abs(b))
    return np.where(same, np.sign(a) * mag, 0.0)


def _axis_differences(q: np.ndarray, h: float, axis: int, theta: float | None) -> tuple[np.ndarray, np.ndarray]:
    """Backward and forward differences of q along one axis with two edge replicated ghost layers."""
    N = q.shape[axis]
    pad = [(0, 0), (0, 0)]
    pad[axis] = (2, 2)
    P = np.pad(q, pad, mode="edge")

    # d1[k] = (P[k+1] - P[k]) / h, so for grid index i: D- = d1[i+1], D+ = d1[i+2]
    d1 = np.diff(P, axis=axis) / h
    dB = np.take(d1, np.arange(1, N + 1), axis=axis)
    dF = np.take(d1, np.arange(2, N + 2), axis=axis)

    if theta is not None:
        # d2[k] = (P[k+2] - 2 P[k+1] + P[k]) / h, centred on grid index k - 1
        d2 = np.diff(P, n=2, axis=axis) / h
        c_m = np.take(d2, np.arange(0, N), axis=axis)
        c_0 = np.take(d2, np.arange(1, N + 1), axis=axis)
        c_p = np.take(d2, np.arange(2, N + 2), axis=axis)
        dB = dB + 0.5 * generalised_minmod(c_m, c_0, theta)
        dF = dF - 0.5 * generalised_minmod(c_0, c_p, theta)
    return dB, dF


def one_sided_differences(
    q: np.ndarray,
    dx: float,
    dy: float,
    theta: float | None = None,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Backward and forward differences of q in x and y.

    Parameters
    q
        Field of shape (Nx, Ny).
    dx, dy
        Grid spacings, must be positive.
    theta
        None for first order differences. Otherwise the generalised minmod
        parameter used to add a limited second order correction.

    Returns
    dBx, dFx, dBy, dFy
        One sided differences, each shaped like q.
    """
    q = np.asarray(q, dtype=float)
    if q.ndim != 2:
        raise ValueError("q must be 2-D (Nx,Ny).")
    if min(dx, dy) <= 0:
        raise ValueError("dx, dy must be positive.")
    dBx, dFx = _axis_differences(q, dx, 0, theta)
    dBy, dFy = _axis_differences(q, dy, 1, theta)
    return dBx, dFx, dBy, dFy


def relax(
    q: np.ndarray,
    rate: Callable[[np.ndarray], np.ndarray],
    n_iters: int,
    dtau: float,
    frozen: np.ndarray | None = None,
) -> np.ndarray:
    """
    Forward Euler pseudo time iteration q <- q + dtau * rate(q).

    Runs exactly n_iters iterations; there is no convergence test. Points in
    frozen keep their initial value.
    """
    q = np.asarray(q, dtype=float).copy()
    q0 = q.copy()
    for _ in range(int(n_iters)):
        q = q + dtau * rate(q)
        if frozen is not None:
            q[frozen] = q0[frozen]
    return q


def extend_field(
    q: np.ndarray,
    phi: np.ndarray,
    dx: float,
    dy: float,
    n_iters: int,
    frozen: np.ndarray,
) -> np.ndarray:
    """
    Extend q away from the interface along the level set normals.

    Iterates q_tau + sign(Phi) n . grad(q) = 0 with first order upwind
    differences. Information travels outward from the frozen points, so after
    the iterations q is approximately constant along normals near them.
    """
    nx, ny = normals(phi, dx, dy)
    s = np.where(phi >= 0.0, 1.0, -1.0)
    ax, ay = s * nx, s * ny

    def transport(f):
        dBx, dFx, dBy, dFy = one_sided_differences(f, dx, dy)
        fx = np.where(ax > 0.0, dBx, dFx)
        fy = np.where(ay > 0.0, dBy, dFy)
        return -(ax * fx + ay * fy)

    return relax(q, transport, n_iters, 0.5 * min(dx, dy), frozen)


def normal_derivatives(
    D: ActiveDomain,
    dOmega: InterfaceSet,
    U: np.ndarray,
    phi: np.ndarray,
    uI,
    par: Params,
    dx: float,
    dy: float,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Normal derivative of the density on each side of the interface.

    At an active point the gradient along an axis is the three point
    derivative through (-hm, u_minus), (0, u_p), (hp, u_plus), with cut sides
    at theta * h carrying the interface value. When a cut is closer than
    theta_b the one sided difference from the opposite side is used instead.

    Returns
    g_u, g_v
        Grid fields holding du/dn at u phase active points and dv/dn at v phase
        active points, zero elsewhere.
    """
    uI = np.broadcast_to(np.asarray(uI, dtype=float), (len(dOmega),))
    frac, val, cut = cut_stencil(D, dOmega, uI)
    u_p = U[D.ix, D.iy]

    grad = []
    for axis, h in ((0, dx), (1, dy)):
        sides = []
        for side, step in ((0, -1), (1, +1)):
            jx = D.ix + step * (axis == 0)
            jy = D.iy + step * (axis == 1)
            hs = np.where(cut[axis, side], frac[axis, side] * h, h)
            us = np.where(cut[axis, side], val[axis, side], U[jx, jy])
            near = cut[axis, side] & (frac[axis, side] < par.theta_b)
            sides.append((hs, us, near))
        (hm, um, near_m), (hp, up, near_p) = sides

        # Zero length cuts only reach the branches masked out below
        with np.errstate(divide="ignore", invalid="ignore"):
            central = (hm * hm * (up - u_p) + hp * hp * (u_p - um)) / (hm * hp * (hm + hp))
            g = np.where(near_m, (up - u_p) / hp, central)
            g = np.where(near_p, (u_p - um) / hm, g)
        g = np.where(near_m & near_p, 0.0, g)
        grad.append(g)

    nx, ny = normals(phi, dx, dy)
    dn = grad[0] * nx[D.ix, D.iy] + grad[1] * ny[D.ix, D.iy]

    v_phase = phi[D.ix, D.iy] >= 0.0
    g_u = D.scatter(np.where(v_phase, 0.0, dn))
    g_v = D.scatter(np.where(v_phase, dn, 0.0))
    return g_u, g_v


def extend_velocity(
    D: ActiveDomain,
    dOmega: InterfaceSet,
    U: np.ndarray,
    phi: np.ndarray,
    par: Params,
    dx: float,
    dy: float,
    u_interface=None,
    verbose: bool = False,
) -> np.ndarray:
    """
    Interface normal velocity from the Stefan condition, extended into a band.

    Workflow
    1) du/dn and dv/dn at active points from the density and the interface value.
    2) Carry each one sided derivative across the interface by normal extension.
    3) At points next to the interface: V = -kappa_u du/dn - kappa_v dv/dn.
    4) Extend V off the interface for exactly par.V_iterations pseudo time steps.

    Parameters
    D, dOmega
        Active set and interface crossings.
    U, phi
        Density and level set fields, shape (Nx, Ny).
    par
        Run parameters.
    dx, dy
        Grid spacings.
    u_interface
        Interface density; computed with interface_density when None.

    Returns
    V
        Extended normal velocity, shape (Nx, Ny). Points the extension has not
        reached are zero.
    """
    U = np.asarray(U, dtype=float)
    phi = np.asarray(phi, dtype=float)
    if U.shape != phi.shape or phi.shape != D.shape:
        raise ValueError("U, Phi and the active domain must share the grid shape.")

    if u_interface is None:
        u_interface = interface_density(dOmega, phi, par, dx, dy)

    V = np.zeros(phi.shape)
    if len(dOmega) == 0:
        return V

    g_u, g_v = normal_derivatives(D, dOmega, U, phi, u_interface, par, dx, dy)
    active = D.mask
    g_u = extend_field(g_u, phi, dx, dy, par.V_iterations, active & (phi < 0.0))
    g_v = extend_field(g_v, phi, dx, dy, par.V_iterations, active & (phi >= 0.0))

    k = dOmega.points
    ix, iy = D.ix[k], D.iy[k]
    V[ix, iy] = -par.kappa_u * g_u[ix, iy] - par.kappa_v * g_v[ix, iy]

    frozen = np.zeros(phi.shape, dtype=bool)
    frozen[ix, iy] = True
    V = extend_field(V, phi, dx, dy, par.V_iterations, frozen)

    if verbose:
        print(f"[extend_velocity] interface points={k.size}, "
              f"V in [{V[ix, iy].min():.4e}, {V[ix, iy].max():.4e}]")
    return V


def level_set(
    V: np.ndarray,
    phi: np.ndarray,
    par: Params,
    dx: float,
    dy: float,
    dt: float,
) -> np.ndarray:
    """
    Advance Phi one step of Phi_t + V |grad Phi| = 0.

    Uses the Osher-Sethian upwind approximation of |grad Phi| built from
    limited second order one sided differences (generalised minmod with
    par.theta) and two stage TVD Runge-Kutta in time. The CFL condition on dt
    is a caller precondition.

    Returns
    Phi_new
        Advected level set, a new array.
    """
    V = np.asarray(V, dtype=float)
    phi = np.asarray(phi, dtype=float)
    if V.shape != phi.shape:
        raise ValueError("V and Phi must have identical shapes.")
    if not np.isfinite(dt) or dt < 0.0:
        raise ValueError("dt must be finite and >= 0.")

    Vp, Vm = np.maximum(V, 0.0), np.minimum(V, 0.0)

    def rate(p):
        dBx, dFx, dBy, dFy = one_sided_differences(p, dx, dy, par.theta)
        grad_plus = np.sqrt(
            np.maximum(dBx, 0.0) ** 2 + np.minimum(dFx, 0.0) ** 2 +
            np.maximum(dBy, 0.0) ** 2 + np.minimum(dFy, 0.0) ** 2
        )
        grad_minus = np.sqrt(
            np.minimum(dBx, 0.0) ** 2 + np.maximum(dFx, 0.0) ** 2 +
            np.minimum(dBy, 0.0) ** 2 + np.maximum(dFy, 0.0) ** 2
        )
        return -(Vp * grad_plus + Vm * grad_minus)

    phi1 = phi + dt * rate(phi)
    phi2 = phi1 + dt * rate(phi1)
    return 0.5 * (phi + phi2)


def _interface_adjacent(phi0: np.ndarray) -> np.ndarray:
    """Points with at least one 4-neighbour in the other phase."""
    side = np.pad(phi0 >= 0.0, 1, mode="edge")
    c = side[1:-1, 1:-1]
    return (
        (side[:-2, 1:-1] != c) | (side[2:, 1:-1] != c) |
        (side[1:-1, :-2] != c) | (side[1:-1, 2:] != c)
    )


def reinitialisation(
    phi: np.ndarray,
    par: Params,
    dx: float,
    dy: float,
    n_iters: int,
    dtau: float | None = None,
) -> np.ndarray:
    """
    Reinitialize Phi toward a signed distance function without moving its zero contour.

    This implements the standard reinitialization update
      Phi_t + S(Phi0) (|grad Phi| - 1) = 0
    with the smoothed sign S(Phi0) = Phi0 / sqrt(Phi0^2 + h^2) and the
    Godunov upwind norm of grad Phi. Points next to the zero contour use the
    subcell fix
      Phi_t = -(sign(Phi0) |Phi| - D) / h,  D = Phi0 / |grad Phi0|,
    which anchors the crossing. Points with Phi0 == 0 are frozen. With
    dtau <= min(dx, dy) / 2 every iteration keeps the sign of Phi.

    Parameters
    phi
        Level set field, shape (Nx, Ny).
    par
        Run parameters (unused numerically, kept for the common stage signature).
    dx, dy
        Grid spacings, must be positive.
    n_iters
        Number of relaxation iterations.
    dtau
        Pseudo time step. If None, chosen as 0.5 * min(dx, dy).

    Returns
    Phi
        Reinitialized Phi field.
    """
    phi0 = np.asarray(phi, dtype=float).copy()
    if phi0.ndim != 2:
        raise ValueError("Phi must be 2-D (Nx,Ny).")
    if min(dx, dy) <= 0:
        raise ValueError("dx, dy must be positive.")

    h = min(dx, dy)
    if dtau is None:
        dtau = 0.5 * h

    s = phi0 / np.sqrt(phi0 * phi0 + h * h)
    sign0 = np.where(phi0 >= 0.0, 1.0, -1.0)

    # Distance estimate for the subcell fix from the initial field
    near = _interface_adjacent(phi0) & (phi0 != 0.0)
    dBx, dFx, dBy, dFy = one_sided_differences(phi0, dx, dy)
    px, py = np.gradient(phi0, dx, dy)
    grad0 = np.maximum.reduce([
        np.hypot(px, py), np.abs(dBx), np.abs(dFx), np.abs(dBy), np.abs(dFy),
        np.full(phi0.shape, 1e-12),
    ])
    dist = phi0 / grad0

    def rate(p):
        dBx, dFx, dBy, dFy = one_sided_differences(p, dx, dy)

        # Godunov scheme components for S >= 0
        a_plus = np.maximum(np.maximum(dBx, 0.0) ** 2, np.maximum(-dFx, 0.0) ** 2)
        b_plus = np.maximum(np.maximum(dBy, 0.0) ** 2, np.maximum(-dFy, 0.0) ** 2)

        # Godunov scheme components for S < 0
        a_minus = np.maximum(np.maximum(dFx, 0.0) ** 2, np.maximum(-dBx, 0.0) ** 2)
        b_minus = np.maximum(np.maximum(dFy, 0.0) ** 2, np.maximum(-dBy, 0.0) ** 2)

        grad = np.where(s >= 0.0, np.sqrt(a_plus + b_plus), np.sqrt(a_minus + b_minus))
        r = -s * (grad - 1.0)
        r[near] = -(sign0[near] * np.abs(p[near]) - dist[near]) / h
        return r

    return relax(phi0, rate, n_iters, dtau, frozen=phi0 == 0.0)
