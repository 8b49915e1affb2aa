"""Tk window showing the tracked frame, the pen patch and the filtered frame."""
from __future__ import annotations

from typing import Optional

import cv2
import numpy as np
from PIL import Image, ImageTk

from stroke_tracker import FrameView

try:
    import tkinter as tk
    from tkinter import ttk
except Exception as exc:  # pragma: no cover - Tkinter should always be present
    raise RuntimeError("Tkinter is required for the frame display") from exc

MAX_FRAME_WIDTH = 960
PATCH_SCALE = 4


def _photo(image: np.ndarray, max_width: Optional[int] = None, scale: int = 1) -> ImageTk.PhotoImage:
    if image.ndim == 2:
        rgb = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    else:
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
    pil = Image.fromarray(rgb)
    if scale != 1:
        pil = pil.resize((pil.width * scale, pil.height * scale), Image.NEAREST)
    if max_width is not None and pil.width > max_width:
        ratio = max_width / float(pil.width)
        pil = pil.resize((max_width, int(pil.height * ratio)))
    return ImageTk.PhotoImage(image=pil)


class TkFrameDisplay:
    """Frame sink; call it with a :class:`FrameView` after each frame."""

    def __init__(self, title: str) -> None:
        self.root = tk.Tk()
        self.root.title(title)
        self.root.protocol("WM_DELETE_WINDOW", self.close)
        self.closed = False

        self.frame_label = ttk.Label(self.root)
        self.frame_label.grid(row=0, column=0, rowspan=2, sticky="nsew")
        self.roi_label = ttk.Label(self.root)
        self.roi_label.grid(row=0, column=1, sticky="n")
        self.processed_label = ttk.Label(self.root)
        self.processed_label.grid(row=1, column=1, sticky="n")
        self.status_var = tk.StringVar()
        ttk.Label(self.root, textvariable=self.status_var, relief=tk.SUNKEN).grid(
            row=2, column=0, columnspan=2, sticky="ew"
        )
        # keep references so Tk does not drop the images
        self._images = []

    def __call__(self, view: FrameView) -> None:
        if self.closed:
            return
        frame = _photo(view.frame, MAX_FRAME_WIDTH)
        roi = _photo(view.roi, scale=PATCH_SCALE)
        processed = _photo(view.processed, MAX_FRAME_WIDTH // 3)
        self.frame_label.configure(image=frame)
        self.roi_label.configure(image=roi)
        self.processed_label.configure(image=processed)
        self._images = [frame, roi, processed]
        tip = view.tip.as_tuple() if view.tip is not None else "-"
        self.status_var.set(f"frame {view.frame_number}  fitness {view.fitness:.3f}  tip {tip}")
        self.root.update()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.root.destroy()
