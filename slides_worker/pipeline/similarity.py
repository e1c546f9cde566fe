"""
Perceptual frame similarity.

Frames are converted to CIE L*a*b* and compared pixel by pixel with the
CIEDE2000 colour difference. The mean difference d maps to a similarity of
(100 - d) / 100, clamped to [0, 1].

Pixels are independent, so large frames are split into contiguous chunks that
run on an executor; numpy releases the GIL inside the element-wise kernels.
"""

from concurrent.futures import Executor
from typing import Optional

import cv2
import numpy as np

# Below this many pixels per chunk thread hand-off costs more than it saves
MIN_CHUNK_PIXELS = 1 << 16


def rgb_to_lab(frame: np.ndarray) -> np.ndarray:
    """uint8 RGB (..., 3) -> float L*a*b* with shape (N, 3)"""
    pixels = frame.reshape(-1, 1, 3).astype(np.float32) / 255.0
    return cv2.cvtColor(pixels, cv2.COLOR_RGB2Lab).reshape(-1, 3).astype(np.float64)


def ciede2000(lab1: np.ndarray, lab2: np.ndarray) -> np.ndarray:
    """Vectorised CIEDE2000 difference between two (N, 3) L*a*b* arrays"""
    L1, a1, b1 = lab1[:, 0], lab1[:, 1], lab1[:, 2]
    L2, a2, b2 = lab2[:, 0], lab2[:, 1], lab2[:, 2]

    C1 = np.hypot(a1, b1)
    C2 = np.hypot(a2, b2)
    C_bar7 = ((C1 + C2) / 2.0) ** 7
    G = 0.5 * (1.0 - np.sqrt(C_bar7 / (C_bar7 + 25.0 ** 7)))

    a1p = (1.0 + G) * a1
    a2p = (1.0 + G) * a2
    C1p = np.hypot(a1p, b1)
    C2p = np.hypot(a2p, b2)

    h1p = np.degrees(np.arctan2(b1, a1p)) % 360.0
    h2p = np.degrees(np.arctan2(b2, a2p)) % 360.0

    dLp = L2 - L1
    dCp = C2p - C1p

    chroma_zero = (C1p * C2p) == 0
    dh = h2p - h1p
    dh = np.where(dh > 180.0, dh - 360.0, dh)
    dh = np.where(dh < -180.0, dh + 360.0, dh)
    dh = np.where(chroma_zero, 0.0, dh)
    dHp = 2.0 * np.sqrt(C1p * C2p) * np.sin(np.radians(dh) / 2.0)

    Lp_bar = (L1 + L2) / 2.0
    Cp_bar = (C1p + C2p) / 2.0

    h_sum = h1p + h2p
    h_far = np.abs(h1p - h2p) > 180.0
    hp_bar = np.where(h_far, np.where(h_sum < 360.0, (h_sum + 360.0) / 2.0, (h_sum - 360.0) / 2.0), h_sum / 2.0)
    hp_bar = np.where(chroma_zero, h_sum, hp_bar)

    T = (1.0
         - 0.17 * np.cos(np.radians(hp_bar - 30.0))
         + 0.24 * np.cos(np.radians(2.0 * hp_bar))
         + 0.32 * np.cos(np.radians(3.0 * hp_bar + 6.0))
         - 0.20 * np.cos(np.radians(4.0 * hp_bar - 63.0)))

    d_theta = 30.0 * np.exp(-(((hp_bar - 275.0) / 25.0) ** 2))
    Cp_bar7 = Cp_bar ** 7
    R_C = 2.0 * np.sqrt(Cp_bar7 / (Cp_bar7 + 25.0 ** 7))
    S_L = 1.0 + (0.015 * (Lp_bar - 50.0) ** 2) / np.sqrt(20.0 + (Lp_bar - 50.0) ** 2)
    S_C = 1.0 + 0.045 * Cp_bar
    S_H = 1.0 + 0.015 * Cp_bar * T
    R_T = -np.sin(np.radians(2.0 * d_theta)) * R_C

    l_term = dLp / S_L
    c_term = dCp / S_C
    h_term = dHp / S_H

    return np.sqrt(np.maximum(l_term ** 2 + c_term ** 2 + h_term ** 2 + R_T * c_term * h_term, 0.0))


def downscale(frame: np.ndarray, width: int) -> np.ndarray:
    """Resize to the given width keeping aspect; width 0 leaves the frame alone"""
    if width <= 0 or frame.shape[1] <= width:
        return frame
    height = max(1, round(frame.shape[0] * width / frame.shape[1]))
    return cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)


def _difference_sum(lab1: np.ndarray, lab2: np.ndarray) -> float:
    return float(ciede2000(lab1, lab2).sum())


def mean_difference(lab1: np.ndarray, lab2: np.ndarray,
                    executor: Optional[Executor] = None, workers: int = 1) -> float:
    """Mean CIEDE2000 over all pixel pairs, chunked across executor when given"""
    total = lab1.shape[0]
    parts = min(workers, total // MIN_CHUNK_PIXELS) if executor is not None else 1

    if parts <= 1:
        return _difference_sum(lab1, lab2) / total

    bounds = np.linspace(0, total, parts + 1, dtype=np.int64)
    futures = [
        executor.submit(_difference_sum, lab1[start:end], lab2[start:end])
        for start, end in zip(bounds[:-1], bounds[1:])
    ]
    return sum(f.result() for f in futures) / total


def similarity_lab(lab1: np.ndarray, lab2: np.ndarray,
                   executor: Optional[Executor] = None, workers: int = 1) -> float:
    """Similarity in [0, 1] between two frames already converted with rgb_to_lab"""
    if lab1.shape != lab2.shape:
        raise ValueError(f"Frame shapes differ: {lab1.shape} vs {lab2.shape}")
    if lab1.shape[0] == 0:
        return 1.0

    score = (100.0 - mean_difference(lab1, lab2, executor, workers)) / 100.0
    return min(max(score, 0.0), 1.0)


def similarity(x: np.ndarray, y: np.ndarray) -> float:
    """Perceptual similarity in [0, 1] between two equally sized RGB frames"""
    if x.shape != y.shape:
        raise ValueError(f"Frame shapes differ: {x.shape} vs {y.shape}")
    if x.size == 0:
        return 1.0

    return similarity_lab(rgb_to_lab(x), rgb_to_lab(y))
