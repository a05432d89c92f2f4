import domain_tools as dom
import export_tools as ex
import fkpp_tools as fk
import import_tools as impt
import levelset_tools as lv
import statistics_tools as stat
import travelling_wave_tools as tw
from parameter_tools import Params
import os
import time
import numpy as np
import argparse


class FisherStefan:
    """
    Level-set solver for the two-phase Fisher-Stefan problem.

    This class:
      - Loads parameters from a project folder (Inputs.txt) or takes a Params record.
      - Builds the grid and the travelling wave initial density and level set.
      - Advances U, Phi and V through the fixed per step pipeline.
      - Tracks the front position on the middle row and the perturbation amplitude.
      - Optionally exports fields and diagnostics and plots snapshots.

    Notes
    -----
    - Arrays are (Nx, Ny) with indexing='ij'; Phi < 0 is the u phase, Phi >= 0 the v phase.
    - The outer time step dt = T / (Nt - 1) is fixed; its stability is up to the caller.
    """

    def __init__(
            self,
            params: Params | None = None,
            project_folder: str | None = None,
            initial_condition: tuple[np.ndarray, np.ndarray] | None = None,
            verbose: bool = False
    ):
        """
        Parameters
        ----------
        params : Params, optional
            Run parameters. Ignored when project_folder holds an Inputs.txt.
        project_folder : str, optional
            Folder with Inputs.txt; results are written below it.
        initial_condition : (U, Phi), optional
            Initial density and level set. Defaults to the perturbed travelling wave.
        verbose : bool
            Print progress lines.
        """
        self.project_folder = project_folder
        self.verbose = verbose

        # Defaults
        self.params = params if params is not None else Params()
        self.export_results = True
        self.plot_results = False
        self.results_folder = os.path.join(project_folder or ".", "results")

        # Import inputs
        if project_folder is not None and os.path.isfile(os.path.join(project_folder, "Inputs.txt")):
            impt.import_inputs(self, project_folder, "Inputs.txt")

        par = self.params
        self.x, self.y, self.t = par.grid()
        self.dx, self.dy, self.dt = par.dx, par.dy, par.dt
        # Slices written as ux / uy and used by the front tracker
        self.nx, self.ny = (par.Nx - 1) // 2, (par.Ny - 1) // 2

        # Initial condition
        self.c = self.omega = None
        if initial_condition is None:
            wave = tw.twic(par, verbose=verbose)
            self.c, self.omega = wave.c, wave.omega
            self.U, self.Phi = tw.ic(par, self.x, self.y, wave)
        else:
            U, Phi = (np.array(a, dtype=float) for a in initial_condition)
            shp = (par.Nx, par.Ny)
            if U.shape != shp or Phi.shape != shp:
                raise ValueError(f"Initial U and Phi must have shape {shp}, got {U.shape} and {Phi.shape}.")
            self.U, self.Phi = U, Phi
        self.V = np.zeros_like(self.Phi)

        # Diagnostics
        L0, A0 = stat.front_position(self.x, self.Phi, par, self.ny, self.dx)
        self.L, self.Amp = [L0], [A0]
        self.plot_times: list[int] = []

    def step(self, i: int) -> None:
        """
        Advance U, Phi and V by one outer time step (step index i >= 1).

        Order: domain, interface, interface density, FKPP, velocity extension,
        level set advection, reinitialisation (every reinit_stride steps),
        front position.
        """
        par = self.params
        t0 = time.perf_counter()

        D = dom.find_domain(par, self.Phi)
        dOmega = dom.find_interface(par, D, self.Phi)
        uf = fk.interface_density(dOmega, self.Phi, par, self.dx, self.dy)

        self.U = fk.fkpp(D, dOmega, self.U, self.Phi, uf, par, self.dt, verbose=self.verbose)
        self.V = lv.extend_velocity(
            D, dOmega, self.U, self.Phi, par, self.dx, self.dy, u_interface=uf, verbose=self.verbose
        )
        self.Phi = lv.level_set(self.V, self.Phi, par, self.dx, self.dy, self.dt)
        if i % par.reinit_stride == 0:
            self.Phi = lv.reinitialisation(self.Phi, par, self.dx, self.dy, par.phi_iterations)

        L, A = stat.front_position(self.x, self.Phi, par, self.ny, self.dx)
        self.L.append(L)
        self.Amp.append(A)

        if self.verbose:
            print(f"[step] i={i}, t={i * self.dt:.4f}, L={L:.6f}, Amp={A:.6f}, "
                  f"{time.perf_counter() - t0:.2f} s")

    def simulate(self) -> None:
        """
        Run the outer time loop i = 1 .. Nt - 1.

        With export_results the grid, the initial fields and plot_times are
        written first; every output_stride steps ux, uy, U, V, Phi and
        plot_times follow, and L and Amp are rewritten after every step.
        With plot_results a density snapshot goes with each export and the
        front history is plotted at the end.
        """
        par = self.params
        out = self.results_folder

        if self.export_results:
            ex.export_initial_state(out, self.x, self.y, self.t, self.U, self.Phi, verbose=self.verbose)
            ex.export_front_history(out, self.L, self.Amp)
        if self.plot_results:
            ex.plot_snapshot(out, 0, self.x, self.y, self.U, self.Phi, float(self.t[0]))

        for i in range(1, par.Nt):
            self.step(i)

            if i % par.output_stride == 0:
                self.plot_times.append(i)
                if self.export_results:
                    ex.export_snapshot(
                        out, i, self.U, self.V, self.Phi, self.nx, self.ny, self.plot_times,
                        verbose=self.verbose
                    )
                if self.plot_results:
                    ex.plot_snapshot(out, i, self.x, self.y, self.U, self.Phi, float(self.t[i]))

            if self.export_results:
                ex.export_front_history(out, self.L, self.Amp)

        if self.plot_results:
            ex.plot_front_history(out, self.t, self.L, self.Amp, c=self.c)
        if self.verbose:
            print(f"[simulate] Done: L={self.L[-1]:.6f}, Amp={self.Amp[-1]:.6f}")


def main():
    """
    CLI entry point.

    Takes an optional positional `project_folder` holding Inputs.txt; without
    it the default parameters are run and results go to ./results.
    """
    parser = argparse.ArgumentParser(description="Run the two-phase Fisher-Stefan level set simulation.")
    parser.add_argument(
        "project_folder",
        type=str,
        nargs="?",
        default=None,
        help="Project folder containing Inputs.txt (e.g. 'test_project')."
    )
    parser.add_argument("--verbose", action="store_true", help="Print progress for every step.")
    args = parser.parse_args()

    sim = FisherStefan(project_folder=args.project_folder, verbose=args.verbose)
    sim.simulate()


if __name__ == "__main__":
    main()
