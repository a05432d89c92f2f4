import os

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.gridspec import GridSpec


def write_table(
        folder_name: str,
        file_name: str,
        data: np.ndarray,
        fmt: str = "%.10e",
        verbose: bool = False
) -> str:
    """
    Write a scalar, 1D or 2D array as a space-separated text table.

    The ".csv" extension is appended when missing. Returns the written path.
    """
    a = np.asarray(data)
    if a.ndim > 2:
        raise ValueError(f"Only 0D, 1D and 2D arrays can be written, got ndim={a.ndim}.")

    os.makedirs(folder_name, exist_ok=True)
    out_path = os.path.join(
        folder_name, file_name if file_name.lower().endswith(".csv") else f"{file_name}.csv"
    )
    np.savetxt(out_path, np.atleast_1d(a), fmt=fmt, delimiter=" ")

    if verbose:
        print(f"[write_table] Wrote shape={a.shape} to {out_path}")
    return out_path


def export_initial_state(
        folder_name: str,
        x: np.ndarray,
        y: np.ndarray,
        t: np.ndarray,
        U: np.ndarray,
        Phi: np.ndarray,
        verbose: bool = False
) -> None:
    """Grid axes, time axis, initial density and level set, and an empty plot_times list."""
    write_table(folder_name, "x", x)
    write_table(folder_name, "y", y)
    write_table(folder_name, "t", t)
    write_table(folder_name, "U-0", U)
    write_table(folder_name, "Phi-0", Phi)
    write_table(folder_name, "plot_times", np.zeros(0, dtype=int), fmt="%d")

    if verbose:
        print(f"[export_initial_state] Nx={np.size(x)}, Ny={np.size(y)}, Nt={np.size(t)} -> {folder_name}")


def export_snapshot(
        folder_name: str,
        i: int,
        U: np.ndarray,
        V: np.ndarray,
        Phi: np.ndarray,
        nx: int,
        ny: int,
        plot_times: list[int],
        verbose: bool = False
) -> None:
    """
    Write the fields of time step i.

    ux-i  density along x on row ny
    uy-i  density along y on column nx
    U-i, V-i, Phi-i  full fields
    plot_times  every step index written so far
    """
    U = np.asarray(U, dtype=float)
    if U.shape != np.shape(V) or U.shape != np.shape(Phi):
        raise ValueError("U, V and Phi must share the grid shape.")
    if not (0 <= nx < U.shape[0] and 0 <= ny < U.shape[1]):
        raise ValueError(f"Slice indices ({nx}, {ny}) outside grid of shape {U.shape}.")

    write_table(folder_name, f"ux-{i}", U[:, ny])
    write_table(folder_name, f"uy-{i}", U[nx, :])
    write_table(folder_name, f"U-{i}", U)
    write_table(folder_name, f"V-{i}", V)
    write_table(folder_name, f"Phi-{i}", Phi)
    write_table(folder_name, "plot_times", np.asarray(plot_times, dtype=int), fmt="%d")

    if verbose:
        print(f"[export_snapshot] Step {i} written to {folder_name}")


def export_front_history(
        folder_name: str,
        L: list[float],
        Amp: list[float],
        verbose: bool = False
) -> None:
    """Front position on the slice row and perturbation amplitude, one entry per step."""
    if len(L) != len(Amp):
        raise ValueError(f"L length {len(L)} != Amp length {len(Amp)}")
    write_table(folder_name, "L", np.asarray(L, dtype=float))
    write_table(folder_name, "Amp", np.asarray(Amp, dtype=float))

    if verbose:
        print(f"[export_front_history] {len(L)} entries -> {folder_name}")


def plot_snapshot(
        folder_name: str,
        i: int,
        x: np.ndarray,
        y: np.ndarray,
        U: np.ndarray,
        Phi: np.ndarray,
        time: float
) -> str:
    """Density map with the zero contour of the level set, saved as snapshot-i.pdf."""
    x = np.asarray(x, float).ravel()
    y = np.asarray(y, float).ravel()
    U = np.asarray(U, float)
    Phi = np.asarray(Phi, float)
    if U.shape != (x.size, y.size) or Phi.shape != U.shape:
        raise ValueError(f"U and Phi must have shape (Nx, Ny) = {(x.size, y.size)}.")

    os.makedirs(folder_name, exist_ok=True)
    out_path = os.path.join(folder_name, f"snapshot-{i}.pdf")

    X, Y = np.meshgrid(x, y, indexing="ij")
    plt.rcParams.update({
        "font.size": 8.5, "axes.labelsize": 8.5, "axes.titlesize": 9.0,
        "xtick.direction": "in", "ytick.direction": "in"
    })
    fig, ax = plt.subplots(figsize=(5.2, 4.2), constrained_layout=True)
    mesh = ax.pcolormesh(X, Y, U, shading="auto", cmap="viridis")
    fig.colorbar(mesh, ax=ax, label="Density u, v")
    # contour needs a sign change in the field
    if np.nanmin(Phi) < 0.0 < np.nanmax(Phi):
        ax.contour(X, Y, Phi, levels=[0.0], colors="crimson", linewidths=1.2)
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    ax.set_aspect("equal")
    ax.set_title(f"t = {time:.4g}")

    fig.savefig(out_path, format="pdf", bbox_inches="tight")
    plt.close(fig)
    return out_path


def plot_front_history(
        folder_name: str,
        time_data: np.ndarray,
        L: np.ndarray,
        Amp: np.ndarray,
        c: float | None = None
) -> str:
    """
    Front position and perturbation amplitude against time, saved as front_history.pdf.

    When the travelling wave speed c is given, the line L(0) + c t is drawn for reference.
    """
    t = np.asarray(time_data, float).ravel()
    L = np.asarray(L, float).ravel()
    Amp = np.asarray(Amp, float).ravel()
    if t.size == 0 or not (t.size == L.size == Amp.size):
        raise ValueError("time_data, L and Amp must be non-empty and of equal length.")

    os.makedirs(folder_name, exist_ok=True)
    out_path = os.path.join(folder_name, "front_history.pdf")

    fig = plt.figure(figsize=(5.6, 5.0), constrained_layout=True)
    gs = GridSpec(2, 1, figure=fig)

    ax1 = fig.add_subplot(gs[0, 0])
    ax1.grid(alpha=0.25)
    ax1.plot(t, L, lw=1.8, color="#1f77b4", label="L(t)")
    if c is not None:
        ax1.plot(t, L[0] + c * (t - t[0]), lw=1.0, ls="--", color="#7f7f7f", label="travelling wave")
    ax1.set_ylabel("Front position")
    ax1.legend(loc="upper left", frameon=False)

    ax2 = fig.add_subplot(gs[1, 0], sharex=ax1)
    ax2.grid(alpha=0.25)
    ax2.plot(t, Amp, lw=1.8, color="#2ca02c")
    ax2.set_xlabel("Time")
    ax2.set_ylabel("Amplitude")

    fig.suptitle("Front history")
    fig.savefig(out_path, format="pdf")
    plt.close(fig)
    return out_path
