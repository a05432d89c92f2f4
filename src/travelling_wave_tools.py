"""
Travelling wave initial condition for the two-phase Fisher-Stefan problem.

The one dimensional wave u0(xi), v0(xi) with xi = x - c t and its first order
correction u1, v1 for a transverse perturbation eps * cos(q y) exp(omega t)
are computed with scipy's collocation BVP solver. The 2D initial density and
level set are then sampled from linear interpolants of these profiles.
"""

import numpy as np
import scipy as sp
from scipy.integrate import solve_bvp

from parameter_tools import Params


class TravellingWave:
    """
    Sampled travelling wave profiles and their linear interpolants.

    Attributes
    xi_l, xi_r
        Sample coordinates of the u phase, [-Lw, 0], and of the v phase, [0, Lw].
    u0, u1, v0, v1
        Leading order profiles and first order corrections on those samples.
    c
        Wave speed.
    omega
        Linear growth rate of the transverse perturbation with wave number q.
    """

    def __init__(self, xi_l, xi_r, u0, u1, v0, v1, c: float, omega: float):
        self.xi_l, self.xi_r = np.asarray(xi_l, float), np.asarray(xi_r, float)
        self.u0, self.u1 = np.asarray(u0, float), np.asarray(u1, float)
        self.v0, self.v1 = np.asarray(v0, float), np.asarray(v1, float)
        self.c, self.omega = float(c), float(omega)

        def _linear(xs, ys):
            return sp.interpolate.interp1d(
                xs, ys, kind="linear", bounds_error=False, fill_value="extrapolate", assume_sorted=True
            )

        self.spl_u0 = _linear(self.xi_l, self.u0)
        self.spl_u1 = _linear(self.xi_l, self.u1)
        self.spl_v0 = _linear(self.xi_r, self.v0)
        self.spl_v1 = _linear(self.xi_r, self.v1)


def wave_length(par: Params) -> float:
    """Half width of the truncated travelling wave domain, enough to cover the grid."""
    return max(par.beta, par.Lx - par.beta) + abs(par.eps) + 1.0


def twic(par: Params, verbose: bool = False) -> TravellingWave:
    """
    Solve for the travelling wave and its transverse correction.

    Leading order, on s in [0, 1] with xi = -Lw (1 - s) (u) and xi = Lw s (v):
      Du u0'' + c u0' + lam_u u0 (1 - u0) = 0,  u0(-Lw) = alpha_u, u0(0) = uf
      Dv v0'' + c v0' + lam_v v0 (1 - v0) = 0,  v0(0) = vf,  v0(Lw) = alpha_v
      c = -kappa_u u0'(0) - kappa_v v0'(0)
    First order, forced by the interface displacement eps cos(q y) exp(omega t):
      Du u1'' + c u1' + (lam_u (1 - 2 u0) - Du q^2 - omega) u1 = -(omega + Du q^2) u0'
      (same for v1), u1(-Lw) = v1(Lw) = 0, u1(0) = v1(0) = -gamma q^2
      omega = -kappa_u u1'(0) - kappa_v v1'(0)
    The speed c and the growth rate omega are unknown parameters of the BVPs.

    Returns
    wave
        TravellingWave with par.Nz samples per phase.
    """
    Lw = wave_length(par)
    s = np.linspace(0.0, 1.0, par.Nz)
    xi_u, xi_v = -Lw * (1.0 - s), Lw * s

    # ---------- leading order wave ----------
    def fun0(_s, y, p):
        c = p[0]
        u, du, v, dv = y
        return np.vstack((
            Lw * du,
            -Lw * (c * du + par.lam_u * u * (1.0 - u)) / par.Du,
            Lw * dv,
            -Lw * (c * dv + par.lam_v * v * (1.0 - v)) / par.Dv,
        ))

    def bc0(ya, yb, p):
        return np.array([
            ya[0] - par.alpha_u,
            yb[0] - par.uf,
            ya[2] - par.vf,
            yb[2] - par.alpha_v,
            p[0] + par.kappa_u * yb[1] + par.kappa_v * ya[3],
        ])

    # tanh shaped guess that already meets the interface values
    y0 = np.vstack((
        par.uf + (par.alpha_u - par.uf) * np.tanh(-xi_u),
        -(par.alpha_u - par.uf) / np.cosh(xi_u) ** 2,
        par.vf + (par.alpha_v - par.vf) * np.tanh(xi_v),
        (par.alpha_v - par.vf) / np.cosh(xi_v) ** 2,
    ))
    c0 = par.kappa_u * (par.alpha_u - par.uf) - par.kappa_v * (par.alpha_v - par.vf)
    base = solve_bvp(fun0, bc0, s, y0, p=[c0], tol=1e-6, max_nodes=100000)
    if not base.success:
        raise RuntimeError(f"Travelling wave BVP did not converge: {base.message}")
    c = float(base.p[0])

    # ---------- first order correction ----------
    q2 = par.q * par.q

    def fun1(s_, y, p):
        omega = p[0]
        u0, du0, v0, dv0 = base.sol(s_)
        u1, du1, v1, dv1 = y
        return np.vstack((
            Lw * du1,
            -Lw * (c * du1 + (par.lam_u * (1.0 - 2.0 * u0) - par.Du * q2 - omega) * u1
                   + (omega + par.Du * q2) * du0) / par.Du,
            Lw * dv1,
            -Lw * (c * dv1 + (par.lam_v * (1.0 - 2.0 * v0) - par.Dv * q2 - omega) * v1
                   + (omega + par.Dv * q2) * dv0) / par.Dv,
        ))

    def bc1(ya, yb, p):
        return np.array([
            ya[0],
            yb[0] + par.gamma * q2,
            ya[2] + par.gamma * q2,
            yb[2],
            p[0] + par.kappa_u * yb[1] + par.kappa_v * ya[3],
        ])

    corr = solve_bvp(fun1, bc1, s, np.zeros((4, s.size)), p=[0.0], tol=1e-6, max_nodes=100000)
    if not corr.success:
        raise RuntimeError(f"Travelling wave correction BVP did not converge: {corr.message}")
    omega = float(corr.p[0])

    Y0, Y1 = base.sol(s), corr.sol(s)
    if verbose:
        print(f"[twic] c={c:.6f}, omega(q={par.q:.4f})={omega:.6f}, Lw={Lw:.3f}")
    return TravellingWave(xi_u, xi_v, Y0[0], Y1[0], Y0[2], Y1[2], c, omega)


def ic(
    par: Params,
    x: np.ndarray,
    y: np.ndarray,
    wave: TravellingWave | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Initial density and level set from the perturbed travelling wave.

    Phi = x - beta - eps cos(q y). The density is
      u0(Phi) + eps u1(Phi) cos(q y)   where Phi < 0
      uf                               where Phi == 0
      v0(Phi) + eps v1(Phi) cos(q y)   where Phi > 0

    Returns
    U, Phi
        Arrays of shape (Nx, Ny).
    """
    if wave is None:
        wave = twic(par)
    X, Y = np.meshgrid(np.asarray(x, float), np.asarray(y, float), indexing="ij")
    phi = X - par.beta - par.eps * np.cos(par.q * Y)
    mode = np.cos(par.q * Y)

    U = np.full(phi.shape, float(par.uf))
    left, right = phi < 0.0, phi > 0.0
    U[left] = wave.spl_u0(phi[left]) + par.eps * wave.spl_u1(phi[left]) * mode[left]
    U[right] = wave.spl_v0(phi[right]) + par.eps * wave.spl_v1(phi[right]) * mode[right]
    return U, phi
