"""Model parameter save/load as raw bytes.

Trainers expose `save()` / `restore(data)` that move a model's parameters in
and out of a byte string, so callers can keep snapshots in memory or write
them wherever they like.

Loading passes `weights_only=True` and falls back for torch releases without it.
"""

from __future__ import annotations

import io
import os

import torch


def module_to_bytes(module) -> bytes:
    """Serialize a module's state_dict."""
    buffer = io.BytesIO()
    torch.save(module.state_dict(), buffer)
    return buffer.getvalue()


def _load(source, device):
    try:
        return torch.load(source, map_location=device, weights_only=True)
    except TypeError:
        return torch.load(source, map_location=device)


def module_from_bytes(module, data: bytes, device=None) -> None:
    """Restore a module's parameters from bytes produced by module_to_bytes."""
    module.load_state_dict(_load(io.BytesIO(data), device))


def save_module(filepath: str, module) -> None:
    """Write a module's state_dict to disk, creating the directory if needed."""
    os.makedirs(os.path.dirname(filepath) or ".", exist_ok=True)
    torch.save(module.state_dict(), filepath)


def load_module(filepath: str, module, device=None) -> None:
    module.load_state_dict(_load(filepath, device))
