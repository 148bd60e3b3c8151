"""
Logistic growth curve with optional step shifts.

    trend(t) = base + sum(shift_j * [t >= shock_j]) + L / (1 + exp(-k * (t - t0)))
"""
from __future__ import annotations

from typing import Mapping, Optional, Sequence, Union

import numpy as np

MODE_STANDARD = "standard"
MODE_SHIFT = "shift"
MODE_DUAL_SHIFT = "dual_shift"
MODE_STARTUP = "startup-forced"

SHIFT_MODES = (MODE_SHIFT, MODE_DUAL_SHIFT)
ALL_MODES = (MODE_STANDARD, MODE_SHIFT, MODE_DUAL_SHIFT, MODE_STARTUP)

# number of searched parameters per mode (base is anchored, never searched)
PARAM_COUNTS = {
    MODE_STANDARD: 3,
    MODE_SHIFT: 4,
    MODE_DUAL_SHIFT: 5,
    MODE_STARTUP: 0,
}

# exp() overflows past ~709
_EXP_CLIP = 500.0

ArrayLike = Union[float, int, Sequence[float], np.ndarray]


def logistic(t: ArrayLike, L: float, k: float, t0: float) -> np.ndarray:
    """Growth component above base."""
    z = np.clip(-k * (np.asarray(t, dtype=float) - t0), -_EXP_CLIP, _EXP_CLIP)
    return L / (1.0 + np.exp(z))


def step_shifts(t: ArrayLike, shocks: Sequence[Sequence[float]]) -> np.ndarray:
    """Sum of step changes in base for each (shock_index, shift) pair."""
    t_arr = np.asarray(t, dtype=float)
    total = np.zeros_like(t_arr, dtype=float)
    for shock_idx, shift in shocks:
        if shock_idx is None or shock_idx < 0:
            continue
        total = total + np.where(t_arr >= shock_idx, float(shift), 0.0)
    return total


def evaluate_curve(
    t: ArrayLike,
    base: float,
    L: float,
    k: float,
    t0: float,
    shocks: Sequence[Sequence[float]] = (),
) -> np.ndarray:
    return base + step_shifts(t, shocks) + logistic(t, L, k, t0)


def project_trend(
    month_index: ArrayLike,
    fit_params: Mapping[str, float],
    mode: str = MODE_STANDARD,
    shock_indices: Optional[Union[int, Sequence[int]]] = None,
):
    """
    Stateless evaluation of a fitted trend at any (past or future) month index.

    ``fit_params`` holds ``base``, ``L``, ``k``, ``t0`` and, for shift modes,
    ``shift`` / ``shift2``. Shift terms apply only in ``shift`` and
    ``dual_shift`` mode. Returns a float for scalar input, an array otherwise.
    """
    if mode not in ALL_MODES:
        raise ValueError(f"Unknown trend mode: {mode}")

    if shock_indices is None:
        shock_list = []
    elif np.isscalar(shock_indices):
        shock_list = [int(shock_indices)]
    else:
        shock_list = [int(s) for s in shock_indices]

    shocks = []
    if mode == MODE_SHIFT and shock_list:
        shocks.append((shock_list[0], fit_params.get("shift", 0.0)))
    elif mode == MODE_DUAL_SHIFT:
        for idx, key in zip(shock_list, ("shift", "shift2")):
            shocks.append((idx, fit_params.get(key, 0.0)))

    values = evaluate_curve(
        month_index,
        base=float(fit_params.get("base", 0.0)),
        L=float(fit_params["L"]),
        k=float(fit_params["k"]),
        t0=float(fit_params["t0"]),
        shocks=shocks,
    )
    if np.ndim(values) == 0:
        return float(values)
    return values
