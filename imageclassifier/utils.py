import os
import torch


def save_checkpoint(state, path):
    """Write a checkpoint dict, creating the parent folder if needed."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    torch.save(state, path)


def load_checkpoint(path, map_location=None):
    if not os.path.exists(path):
        raise FileNotFoundError(f'Checkpoint not found: {path}')
    # checkpoints hold plain python metadata (class names, sizes) next to tensors
    return torch.load(path, map_location=map_location, weights_only=False)


def select_device(device=None):
    return device if device is not None else ('cuda' if torch.cuda.is_available() else 'cpu')
