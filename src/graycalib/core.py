import torch
import numpy as np
import cv2
from PIL import Image


def is_np(x):
    """Checks if x is a numpy array or torch tensor.

    Args:
        x: Object to check.

    Returns:
        bool: True if x is a numpy array, False if x is a torch tensor.

    Raises:
        ValueError: If x is neither a numpy array nor a torch tensor.
    """
    if type(x) == np.ndarray:
        return True
    elif type(x) == torch.Tensor:
        return False
    else:
        raise ValueError("input must be torch.Tensor or np.ndarray")


def is_float(x):
    """Checks if x is a float array.

    Args:
        x: Object to check.

    Returns:
        bool: True if x is a float array, False if x is not.
    """
    if is_np(x):
        return np.issubdtype(x.dtype, np.floating)
    else:
        return torch.is_floating_point(x)


def to_np(x):
    """Converts input to numpy array.

    Captures may arrive as torch tensors (e.g. from a GPU capture pipeline),
    PIL images, or lists of frames.

    Args:
        x: Input tensor, array, PIL Image, or list.

    Returns:
        Numpy array.

    Raises:
        TypeError: If input type cannot be converted to numpy array.
    """
    if type(x) == torch.Tensor:
        return x.detach().cpu().numpy()
    elif type(x) == np.ndarray:
        return x
    elif isinstance(x, Image.Image):
        return np.array(x)
    elif type(x) == list or type(x) == tuple:
        if len(x) > 0 and (
            type(x[0]) in (torch.Tensor, np.ndarray) or isinstance(x[0], Image.Image)
        ):
            return np.stack([to_np(item) for item in x], axis=0)
        return np.array(x)
    else:
        raise TypeError("cannot convert {} to numpy array".format(str(type(x))))


def to_8b(x, clip=True):
    """Converts an array to 8-bit format.

    Args:
        x: Input array (float, double, bool, or uint8).
        clip: If True, clips values to [0,1]. Defaults to True.

    Returns:
        8-bit array.

    Raises:
        ValueError: If unsupported dtype.
    """
    if is_np(x):
        if is_float(x):
            if clip:
                x = np.clip(x, 0, 1)
            return (255 * x).round().astype(np.uint8)
        elif x.dtype == bool:
            return x.astype(np.uint8) * 255
        elif x.dtype == np.uint8:
            return x
        else:
            raise ValueError("unsupported dtype")
    else:
        if is_float(x):
            if clip:
                x = torch.clamp(x, 0, 1)
            return (255 * x).round().type(torch.uint8)
        elif x.dtype == torch.bool:
            return x.type(torch.uint8) * 255
        elif x.dtype == torch.uint8:
            return x
        else:
            raise ValueError("unsupported dtype")


def to_float(x, clip=True):
    """Converts an 8-bit or bool array to float.

    Args:
        x: Input array (uint8, bool, or float).
        clip: If True, clips values to [0,1]. Defaults to True.

    Returns:
        Float array.

    Raises:
        ValueError: If unsupported dtype.
    """
    if x.dtype == np.uint8:
        return x.astype(np.float32) / 255
    elif x.dtype == bool:
        return x.astype(np.float32)
    elif is_float(x):
        if clip:
            x = np.clip(x, 0, 1)
        return x
    else:
        raise ValueError("unsupported dtype")


def to_gray(x):
    """Converts a single frame to a single channel intensity image.

    Color frames are assumed to be in OpenCV channel order (BGR).

    Args:
        x: Numpy array or torch tensor of shape (h, w), (h, w, 1) or (h, w, 3), uint8.

    Returns:
        uint8 numpy array of shape (h, w).

    Raises:
        ValueError: If x is not a 2D/3D uint8 image with 1 or 3 channels.
    """
    x = to_np(x)
    if x.dtype != np.uint8:
        raise ValueError("frames must be uint8")
    if x.ndim == 2:
        return x
    if x.ndim != 3:
        raise ValueError("ndim of a frame must be 2 (h, w) or 3 (h, w, c)")
    if x.shape[-1] == 1:
        return x[..., 0]
    elif x.shape[-1] == 3:
        return cv2.cvtColor(x, cv2.COLOR_BGR2GRAY)
    else:
        raise ValueError("frames must have 1 or 3 channels")


def frames_to_gray(frames):
    """Converts a stack of frames to single channel intensity images.

    Args:
        frames: list of frames, or array/tensor of shape (n, h, w), (n, h, w, 1) or (n, h, w, 3).

    Returns:
        uint8 numpy array of shape (n, h, w).
    """
    if type(frames) == list or type(frames) == tuple:
        gray = [to_gray(frame) for frame in frames]
        if len(gray) == 0:
            raise ValueError("frames must not be empty")
        if any(frame.shape != gray[0].shape for frame in gray):
            raise ValueError("all frames must have the same dimensions")
        return np.stack(gray, axis=0)
    frames = to_np(frames)
    if frames.ndim not in (3, 4):
        raise ValueError("frames must be 3D (n, h, w) or 4D (n, h, w, c)")
    if frames.ndim == 3:
        if frames.dtype != np.uint8:
            raise ValueError("frames must be uint8")
        return frames
    return np.stack([to_gray(frame) for frame in frames], axis=0)
