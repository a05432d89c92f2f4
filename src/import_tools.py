import os
from typing import Any, Dict

from parameter_tools import Params


def import_inputs(sim: Any, project_folder: str, inputs_file: str) -> None:
    """
    Parse an inputs file; populate `sim` in place.

    The file holds `key = value` lines grouped under the section headers
    "Model inputs", "Numerical inputs" and "Exporting inputs". Everything after
    a '#' is a comment. Keys of the first two sections are Params field names
    (case-insensitive); the exporting section accepts "export results?",
    "plot results?" and "results folder".

    Sets on `sim`
      params, export_results, plot_results, results_folder
    """

    # ---------- helpers ----------
    def _clean(line: str) -> str | None:
        s = line.split("#", 1)[0].strip()
        return s or None

    def _as_bool(v: str | None, default=False) -> bool:
        if v is None:
            return default
        return v.strip().lower() in {"1", "true", "t", "yes", "y"}

    def _as_float(v: str, name: str) -> float:
        try:
            return float(v)
        except Exception as e:
            raise ValueError(f"Invalid float for '{name}': {v}") from e

    def _as_int(v: str, name: str) -> int:
        return int(round(_as_float(v, name)))

    # ---------- read & sectionize ----------
    path = os.path.join(os.path.abspath(project_folder), inputs_file)
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Inputs file not found: {path}")

    model, num, exp = {}, {}, {}
    cur = None
    with open(path, "r", encoding="utf-8") as f:
        for raw in f:
            s = _clean(raw)
            if not s:
                continue
            low = s.lower()
            if "model inputs" in low:
                cur = model; continue
            if "numerical inputs" in low:
                cur = num; continue
            if "exporting inputs" in low:
                cur = exp; continue
            if cur is None or "=" not in s:
                continue
            k, v = map(str.strip, s.split("=", 1))
            cur[k.lower()] = v

    # ---------- parameters ----------
    types = {name.lower(): (name, kind) for name, kind in Params.field_types().items()}
    values: Dict[str, Any] = {}
    for key, raw in {**model, **num}.items():
        if key not in types:
            raise ValueError(f"Unknown parameter '{key}' in {inputs_file}.")
        name, kind = types[key]
        if kind is int:
            values[name] = _as_int(raw, name)
        elif kind is float:
            values[name] = _as_float(raw, name)
        else:
            values[name] = raw.strip()
    sim.params = Params(**values)

    # ---------- exporting flags ----------
    sim.export_results = _as_bool(exp.get("export results?"), True)
    sim.plot_results = _as_bool(exp.get("plot results?"), False)
    folder = exp.get("results folder") or "results"
    sim.results_folder = os.path.join(os.path.abspath(project_folder), folder)
