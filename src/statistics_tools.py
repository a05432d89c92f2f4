import numpy as np

from parameter_tools import Params


def front_position(
        x: np.ndarray,
        phi: np.ndarray,
        par: Params,
        ny: int,
        dx: float,
) -> tuple[float, float]:
    """
    Locate the interface along x and measure its transverse perturbation.

    Every row j = const is scanned for consecutive samples with
    Phi[i, j] < 0 <= Phi[i+1, j]; the crossing is interpolated linearly,
    x_i + theta * dx with theta = Phi[i] / (Phi[i] - Phi[i+1]).

    Parameters
    ----------
    x : np.ndarray
        Grid x coordinates, length Nx.
    phi : np.ndarray
        Level set field of shape (Nx, Ny).
    par : Params
        Run parameters (grid size).
    ny : int
        Index of the row whose crossing is reported as the front position.
    dx : float
        Grid spacing in x.

    Returns
    -------
    L : float
        Crossing on row ny. When the row holds several crossings the last one
        wins; 0.0 if there is none.
    amplitude : float
        (max crossing - min crossing) / 2 over all rows, 0.0 without crossings.

    Examples
    --------
    >>> par = Params(Nx=101, Ny=51)
    >>> x, y, _ = par.grid()
    >>> X, Y = np.meshgrid(x, y, indexing="ij")
    >>> L, amp = front_position(x, X - 5.0 - 0.1 * np.cos(Y), par, 25, par.dx)
    """
    x = np.asarray(x, dtype=float)
    phi = np.asarray(phi, dtype=float)
    if phi.shape != (par.Nx, par.Ny) or x.size != par.Nx:
        raise ValueError(f"Expected x of length {par.Nx} and Phi of shape {(par.Nx, par.Ny)}.")

    left, right = phi[:-1, :], phi[1:, :]
    crossing = (left < 0.0) & (right >= 0.0)
    if not np.any(crossing):
        return 0.0, 0.0

    # right >= 0 > left, so the denominator is strictly negative
    theta = left[crossing] / (left[crossing] - right[crossing])
    i, j = np.nonzero(crossing)
    Lj = x[i] + theta * dx

    on_slice = j == ny
    L = float(Lj[on_slice][-1]) if np.any(on_slice) else 0.0
    return L, 0.5 * float(Lj.max() - Lj.min())
