import os
import types
import warnings
import numpy as np
import matplotlib
matplotlib.use("Agg")  # headless
import pytest

import domain_tools as dom
import export_tools as ex
import fkpp_tools as fk
import import_tools as impt
import levelset_tools as lv
import statistics_tools as stat
import travelling_wave_tools as tw
from parameter_tools import Params
from stefan_tools import FisherStefan


def _mesh(par):
    x, y, _ = par.grid()
    X, Y = np.meshgrid(x, y, indexing="ij")
    return x, y, X, Y


def _flat_front(x0=5.013, Nx=41, Ny=11, **kw):
    """Flat interface at x = x0 with linear densities on both sides, zero on the interface."""
    par = Params(Nx=Nx, Ny=Ny, Lx=10.0, Ly=2.5, **kw)
    _, _, X, _ = _mesh(par)
    phi = X - x0
    U = np.where(phi < 0.0, 0.5 * (x0 - X), 0.3 * (X - x0))
    return par, phi, U


def test_params_validation_and_grid():
    par = Params(Nx=21, Ny=11, Nt=5, Lx=4.0, Ly=2.0, T=0.4, beta=2.0)
    x, y, t = par.grid()
    assert x.size == 21 and y.size == 11 and t.size == 5
    assert x[0] == 0.0 and y[0] == 0.0
    assert par.dx == pytest.approx(0.2) and par.dy == pytest.approx(0.2) and par.dt == pytest.approx(0.1)

    for bad in (dict(Nx=2), dict(Ly=-1.0), dict(theta=0.5), dict(theta_b=0.0),
                dict(V_iterations=-1), dict(beta=20.0), dict(output_stride=0)):
        with pytest.raises(ValueError):
            Params(**bad)


def test_find_domain_order_idempotent_and_band():
    """
    1) Classification is idempotent and grid-major without duplicates.
    2) Single phase classification keeps the other phase only within the band.
    """
    # --- 1) Two-phase set
    par = Params(Nx=21, Ny=11, Lx=10.0, Ly=5.0)
    _, _, X, Y = _mesh(par)
    phi = np.hypot(X - 5.0, Y - 2.5) - 1.7
    D1 = dom.find_domain(par, phi)
    D2 = dom.find_domain(par, phi)
    assert np.array_equal(D1.ix, D2.ix) and np.array_equal(D1.iy, D2.iy)
    flat = D1.ix * par.Ny + D1.iy
    assert np.all(np.diff(flat) > 0)
    assert len(D1) == (par.Nx - 2) * (par.Ny - 2)

    # --- 2) Band rule on a flat front between x_10 = 5.0 and x_11 = 5.5
    phi = X - 5.05
    Du = dom.find_domain(par, phi, phase=-1, band=1)
    assert Du.ix.min() == 1 and Du.ix.max() == 11
    Du2 = dom.find_domain(par, phi, phase=-1, band=2)
    assert Du2.ix.max() == 12
    Dv = dom.find_domain(par, phi, phase=+1, band=1)
    assert Dv.ix.min() == 10 and Dv.ix.max() == par.Nx - 2
    assert np.all(np.diff(Dv.ix * par.Ny + Dv.iy) > 0)

    with pytest.raises(ValueError):
        dom.find_domain(par, phi[:-1])


def test_scatter_gather_roundtrip():
    rng = np.random.default_rng(3)
    mask = rng.random((13, 9)) > 0.4
    D = dom.ActiveDomain.from_mask(mask)
    u = rng.normal(size=len(D))
    assert np.array_equal(D.gather(D.scatter(u)), u)

    base = rng.normal(size=mask.shape)
    U = D.scatter(u, base=base)
    assert np.array_equal(U[~mask], base[~mask])
    assert np.all(D.lookup[~mask] == -1)
    assert np.array_equal(D.lookup[D.ix, D.iy], np.arange(len(D)))

    with pytest.raises(ValueError):
        D.scatter(u[:-1])
    with pytest.raises(ValueError):
        D.gather(base[:-1])


def test_interface_crossings_finite_and_located():
    """
    1) Exact zeros and equal neighbour values never yield non-finite crossings.
    2) A flat front is located exactly, once per (point, axis, direction).
    """
    # --- 1) Piecewise constant field with many ties and zeros
    par = Params(Nx=15, Ny=12)
    rng = np.random.default_rng(0)
    phi = rng.choice([-1.0, 0.0, 0.0, 1.0], size=(par.Nx, par.Ny))
    D = dom.find_domain(par, phi)
    dOmega = dom.find_interface(par, D, phi)
    assert len(dOmega) > 0
    for a in (dOmega.theta, dOmega.x, dOmega.y):
        assert np.all(np.isfinite(a))
    assert np.all((dOmega.theta >= 0.0) & (dOmega.theta <= 1.0))
    keys = np.stack([dOmega.point, dOmega.axis, dOmega.direction], axis=1)
    assert np.unique(keys, axis=0).shape[0] == len(dOmega)

    # --- 2) Flat front
    par, phi, _ = _flat_front()
    D = dom.find_domain(par, phi)
    dOmega = dom.find_interface(par, D, phi)
    assert len(dOmega) == 2 * (par.Ny - 2)
    assert np.allclose(dOmega.x, 5.013)
    assert np.all(dOmega.axis == 0)
    assert set(np.unique(dOmega.ix)) == {20, 21}
    assert np.all(np.diff(dOmega.point) >= 0)


def test_interface_density_gibbs_thomson():
    par = Params(Nx=101, Ny=101, gamma=0.1, uf=0.0)
    _, _, X, Y = _mesh(par)
    phi = np.hypot(X - 5.0, Y - 5.0) - 2.0
    D = dom.find_domain(par, phi)
    dOmega = dom.find_interface(par, D, phi)

    uI = fk.interface_density(dOmega, phi, par, par.dx, par.dy)
    assert isinstance(uI, np.ndarray) and uI.shape == (len(dOmega),)
    # curvature of a circle of radius 2 is 1/2
    assert np.allclose(uI, -0.05, atol=2e-3)

    flat = Params(Nx=101, Ny=101, uf=0.3)
    assert fk.interface_density(dOmega, phi, flat, flat.dx, flat.dy) == 0.3
    empty = dom.find_interface(par, D, np.ones_like(phi))
    assert len(empty) == 0
    assert fk.interface_density(empty, phi, par, par.dx, par.dy) == 0.0


def test_cut_stencil_exact_for_linear_profiles():
    par, phi, U = _flat_front()
    D = dom.find_domain(par, phi)
    dOmega = dom.find_interface(par, D, phi)
    A, b, lam, pinned, _ = fk.assemble_operator(D, dOmega, phi, 0.0, par)
    assert not np.any(pinned)

    res = A @ D.gather(U) + b
    # away from the outer edges, whose missing neighbour carries no flux
    inner = (D.ix >= 2) & (D.ix <= par.Nx - 3)
    assert np.allclose(res[inner], 0.0, atol=1e-8)


def test_cut_stencil_zero_length_cut_is_pinned_quietly():
    # Phi is exactly 0 at x_20 = 5.0, so the cut from that point has zero length
    par, phi, U = _flat_front(x0=5.0)
    D = dom.find_domain(par, phi)
    dOmega = dom.find_interface(par, D, phi)
    assert np.any(dOmega.theta == 0.0)

    with warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        A, b, _, pinned, pin_value = fk.assemble_operator(D, dOmega, phi, 0.0, par)
        U_new = fk.fkpp(D, dOmega, U, phi, 0.0, par, 0.01)

    assert np.all(np.isfinite(A.data)) and np.all(np.isfinite(b))
    on_front = D.ix == 20
    assert np.all(pinned[on_front]) and np.all(pin_value[on_front] == 0.0)
    assert np.allclose(U_new[20, 1:-1], 0.0, atol=1e-12)


def test_fkpp_logistic_growth_without_interface():
    par = Params(Nx=11, Ny=11, lam_u=1.0, lam_v=1.0)
    phi = np.ones((par.Nx, par.Ny))
    U = np.full(phi.shape, 0.5)
    D = dom.find_domain(par, phi)
    dOmega = dom.find_interface(par, D, phi)
    assert len(dOmega) == 0

    dt = 0.1
    U_new = fk.fkpp(D, dOmega, U, phi, par.uf, par, dt)
    exact = 1.0 / (1.0 + np.exp(-dt))
    assert np.allclose(U_new, exact, atol=1e-5)

    with pytest.raises(ValueError):
        fk.fkpp(D, dOmega, U[:-1], phi, par.uf, par, dt)


def test_fkpp_pins_points_on_the_interface():
    # crossing 0.001 from x_20 = 5.0, i.e. 0.004 grid spacings
    par, phi, U = _flat_front(x0=5.001)
    D = dom.find_domain(par, phi)
    dOmega = dom.find_interface(par, D, phi)
    U = U + 0.05
    U_new = fk.fkpp(D, dOmega, U, phi, 0.0, par, 0.01)

    assert np.allclose(U_new[20, 1:-1], 0.0, atol=1e-12)
    assert np.all(np.isfinite(U_new))
    # Neumann closure
    assert np.array_equal(U_new[0, :], U_new[1, :])
    assert np.array_equal(U_new[:, -1], U_new[:, -2])


def test_generalised_minmod():
    a = np.array([1.0, 1.0, -2.0, 0.0])
    b = np.array([3.0, -1.0, -4.0, 5.0])
    assert np.allclose(lv.generalised_minmod(a, b, 1.0), [1.0, 0.0, -2.0, 0.0])
    assert np.allclose(lv.generalised_minmod(a, b, 2.0), [2.0, 0.0, -3.0, 0.0])


def test_extended_velocity_constant_along_normals():
    """
    Flat interface, u = 0.5 (x0 - x) and v = 0.3 (x - x0):
    V = -0.2 * (-0.5) - 0.1 * 0.3 = 0.07 on the interface and along its normals.
    """
    par, phi, U = _flat_front(kappa_u=0.2, kappa_v=0.1)
    D = dom.find_domain(par, phi)
    dOmega = dom.find_interface(par, D, phi)
    V = lv.extend_velocity(D, dOmega, U, phi, par, par.dx, par.dy)

    assert V.shape == phi.shape
    assert np.allclose(V[20:22, 1:-1], 0.07, atol=1e-6)
    assert np.allclose(V[17:25, 1:-1], 0.07, atol=1e-4)
    # no variation along the interface
    assert np.allclose(V[:, 1:-1], V[:, [5]], atol=1e-12)

    V0 = lv.extend_velocity(D, dom.find_interface(par, D, np.ones_like(phi)), U, np.ones_like(phi),
                            par, par.dx, par.dy)
    assert np.array_equal(V0, np.zeros_like(phi))


def test_planar_advection_exact_in_interior():
    par = Params(Nx=41, Ny=11, Lx=10.0, Ly=2.5)
    _, _, X, _ = _mesh(par)
    phi = X - 3.0
    V = np.full(phi.shape, 0.5)
    phi_new = lv.level_set(V, phi, par, par.dx, par.dy, 0.1)
    assert np.allclose(phi_new[5:-5, :], phi[5:-5, :] - 0.05, atol=1e-12)

    with pytest.raises(ValueError):
        lv.level_set(V[:, :-1], phi, par, par.dx, par.dy, 0.1)


def test_reinitialisation_preserves_sign_and_restores_distance():
    par = Params(Nx=41, Ny=41)
    _, _, X, Y = _mesh(par)
    r = np.hypot(X - 5.0, Y - 5.0)
    phi = 3.0 * (r - 2.0) * (1.0 + 0.05 * (X - 5.0) ** 2)

    for n in (1, 7, 50):
        out = lv.reinitialisation(phi, par, par.dx, par.dy, n)
        assert np.array_equal(out >= 0.0, phi >= 0.0)
        assert np.array_equal(out < 0.0, phi < 0.0)

    out = lv.reinitialisation(phi, par, par.dx, par.dy, 50)
    gx, gy = np.gradient(out, par.dx, par.dy)
    band = np.abs(out) < 1.0
    assert abs(np.median(np.hypot(gx, gy)[band]) - 1.0) < 0.15

    # a signed distance function is left alone
    flat = X - 5.05
    assert np.allclose(lv.reinitialisation(flat, par, par.dx, par.dy, 20), flat, atol=1e-12)


def test_front_position_cosine_interface():
    par = Params(Nx=101, Ny=51)
    x, y, X, Y = _mesh(par)
    phi = X - 5.0 - 0.1 * np.cos(Y)
    ny = 25

    L, amp = stat.front_position(x, phi, par, ny, par.dx)
    crossings = 5.0 + 0.1 * np.cos(y)
    assert L == pytest.approx(crossings[ny], abs=1e-10)
    assert amp == pytest.approx(0.5 * (crossings.max() - crossings.min()), abs=1e-10)

    assert stat.front_position(x, np.ones_like(phi), par, ny, par.dx) == (0.0, 0.0)
    # the last crossing on the row wins
    twice = np.where(X < 7.5, phi, 10.0 - X - 0.3)
    L2, _ = stat.front_position(x, np.where(X < 8.5, twice, X - 9.05), par, ny, par.dx)
    assert L2 == pytest.approx(9.05, abs=1e-10)


def test_travelling_wave_boundary_and_stefan_conditions():
    par = Params(Nz=121)
    wave = tw.twic(par)

    assert wave.u0[0] == pytest.approx(par.alpha_u, abs=1e-5)
    assert wave.u0[-1] == pytest.approx(par.uf, abs=1e-5)
    assert wave.v0[0] == pytest.approx(par.vf, abs=1e-5)
    assert wave.v0[-1] == pytest.approx(par.alpha_v, abs=1e-5)
    assert wave.u1[0] == pytest.approx(0.0, abs=1e-5)
    assert wave.v1[-1] == pytest.approx(0.0, abs=1e-5)
    assert np.isfinite(wave.c) and np.isfinite(wave.omega)

    # second order one sided slopes at the interface
    h = wave.xi_r[1] - wave.xi_r[0]
    du = (3.0 * wave.u0[-1] - 4.0 * wave.u0[-2] + wave.u0[-3]) / (2.0 * h)
    dv = (-3.0 * wave.v0[0] + 4.0 * wave.v0[1] - wave.v0[2]) / (2.0 * h)
    assert wave.c == pytest.approx(-par.kappa_u * du - par.kappa_v * dv, abs=1e-2)

    x, y, X, Y = _mesh(par)
    U, phi = tw.ic(par, x, y, wave)
    assert U.shape == phi.shape == (par.Nx, par.Ny)
    assert np.allclose(phi, X - par.beta - par.eps * np.cos(par.q * Y))
    assert np.all(np.isfinite(U))


def test_import_inputs(tmp_path):
    text = """
    # Fisher-Stefan run
    Model inputs
    Du = 0.5          # diffusion (u)
    kappa_U = 0.3
    gamma = 0.01

    Numerical inputs
    Nx = 41
    Ny = 21
    Nt = 11
    ode_method = Radau

    Exporting inputs
    export results? = no
    plot results? = yes
    results folder = out
    """
    (tmp_path / "Inputs.txt").write_text(text, encoding="utf-8")
    sim = types.SimpleNamespace()
    impt.import_inputs(sim, str(tmp_path), "Inputs.txt")

    par = sim.params
    assert par.Du == 0.5 and par.kappa_u == 0.3 and par.gamma == 0.01
    assert par.Nx == 41 and isinstance(par.Nx, int)
    assert par.ode_method == "Radau"
    assert Params.field_types()["Nx"] is int and Params.field_types()["Du"] is float
    assert par.Dv == Params().Dv
    assert sim.export_results is False and sim.plot_results is True
    assert sim.results_folder == os.path.join(str(tmp_path), "out")

    (tmp_path / "Inputs.txt").write_text("Model inputs\nfoo = 1\n", encoding="utf-8")
    with pytest.raises(ValueError):
        impt.import_inputs(sim, str(tmp_path), "Inputs.txt")
    (tmp_path / "Inputs.txt").write_text("Numerical inputs\nNx = abc\n", encoding="utf-8")
    with pytest.raises(ValueError):
        impt.import_inputs(sim, str(tmp_path), "Inputs.txt")
    with pytest.raises(FileNotFoundError):
        impt.import_inputs(sim, str(tmp_path), "Missing.txt")


def test_pure_diffusion_keeps_flat_front():
    par = Params(Nx=41, Ny=11, Lx=10.0, Ly=2.5, lam_u=0.0, lam_v=0.0, kappa_u=0.0, kappa_v=0.0,
                 eps=0.0, T=0.1, Nt=6)
    _, _, X, _ = _mesh(par)
    phi = X - 5.05
    U = np.where(phi < 0.0, 1.0 - np.exp(phi), 1.0 - np.exp(-phi))

    sim = FisherStefan(params=par, initial_condition=(U, phi))
    for i in range(1, par.Nt):
        sim.step(i)
    assert len(sim.L) == par.Nt
    assert np.allclose(sim.L, 5.05, atol=1e-12)
    assert np.allclose(sim.Amp, 0.0, atol=1e-12)
    assert np.all(np.isfinite(sim.U))


def test_default_run_one_step():
    sim = FisherStefan()
    par = sim.params
    assert sim.c is not None and np.isfinite(sim.c)
    sim.step(1)

    assert np.all(np.isfinite(sim.U)) and np.all(np.isfinite(sim.Phi))
    L = sim.L[-1]
    assert par.beta - par.eps <= L <= par.beta + par.eps
    assert 0.0 <= sim.Amp[-1] <= par.eps + 1e-12


def test_simulate_writes_outputs(tmp_path):
    par = Params(Nx=21, Ny=11, Lx=10.0, Ly=5.0, T=0.02, Nt=3, output_stride=1)
    _, _, X, Y = _mesh(par)
    phi = X - 4.8 - 0.2 * np.cos(2.0 * np.pi * Y / par.Ly)
    U = np.where(phi < 0.0, np.clip(-phi, 0.0, 1.0), np.clip(phi, 0.0, 1.0))

    sim = FisherStefan(params=par, project_folder=str(tmp_path), initial_condition=(U, phi))
    assert sim.results_folder == os.path.join(str(tmp_path), "results")
    sim.plot_results = True
    sim.simulate()

    out = tmp_path / "results"
    names = ["x", "y", "t", "U-0", "Phi-0", "plot_times", "L", "Amp"]
    for i in (1, 2):
        names += [f"ux-{i}", f"uy-{i}", f"U-{i}", f"V-{i}", f"Phi-{i}"]
    for name in names:
        assert (out / f"{name}.csv").is_file(), name
    for name in ("snapshot-0", "snapshot-1", "snapshot-2", "front_history"):
        assert (out / f"{name}.pdf").is_file(), name

    assert np.loadtxt(out / "x.csv").shape == (par.Nx,)
    assert np.loadtxt(out / "U-2.csv").shape == (par.Nx, par.Ny)
    assert np.allclose(np.loadtxt(out / "ux-2.csv"), sim.U[:, sim.ny])
    assert np.allclose(np.loadtxt(out / "uy-2.csv"), sim.U[sim.nx, :])
    assert np.array_equal(np.loadtxt(out / "plot_times.csv", dtype=int), [1, 2])
    assert np.allclose(np.loadtxt(out / "L.csv"), sim.L)
    assert np.loadtxt(out / "Amp.csv").shape == (par.Nt,)


def test_write_table_rejects_3d(tmp_path):
    path = ex.write_table(str(tmp_path), "scalar", 3.5)
    assert np.loadtxt(path) == pytest.approx(3.5)
    with pytest.raises(ValueError):
        ex.write_table(str(tmp_path), "cube", np.zeros((2, 2, 2)))
