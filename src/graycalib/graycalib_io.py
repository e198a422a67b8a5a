import numpy as np
import cv2
from pathlib import Path
from .core import to_8b, to_np, to_float
from PIL import Image
import json


def write_to_json(data, dst):
    """
    writes data to json file
    :param data: data to write
    :param dst: path to save json file to
    """
    dst = Path(dst)
    dst.parent.mkdir(parents=True, exist_ok=True)
    with open(dst, "w") as f:
        json.dump(data, f, indent=4, sort_keys=True)


def save_image(
    image,
    dst,
    overwrite: bool = True,
):
    """
    saves single image as png
    :param image: (H x W x C) array or (H x W) array
    :param dst: path to save image to (full path to destination, suffix not neccessary but allowed)
    :param overwrite: if True, overwrites an existing image
    """
    if image.ndim == 2:
        image = image[..., None]
    if image.ndim != 3:
        raise ValueError("Image must be 2 or 3 dimensional")
    dst = Path(dst)
    save_images(image[None, ...], dst.parent, [dst.name], overwrite)


def save_images(
    images,
    dst,
    file_names: list = [],
    overwrite: bool = True,
):
    """
    saves images as png, e.g. the output of GrayCode.encode for projection
    :param images: (b x H x W x C) np array, or list of (H X W X C)
    :param dst: path to save images to (will create folder if it does not exist)
    :param file_names: if provided, saves images with these names (list of length b)
    :param overwrite: if True, overwrites existing images
    """
    images = to_np(images)
    if images.dtype == np.float32 or images.dtype == np.float64 or images.dtype == bool:
        if np.isnan(images).any():
            raise ValueError("Images must be finite")
        images = to_8b(images)
    if images.dtype != np.uint8:
        raise ValueError(
            "Images must be of type uint8 (or float32/64, which will be converted to uint8)"
        )
    if images.ndim != 4:
        raise ValueError("Images must be of shape (b x H x W x C)")
    if file_names:
        if images.shape[0] != len(file_names):
            raise ValueError(
                "Number of images and length of file names list must match"
            )
        file_names = [Path(x).stem for x in file_names]  # remove suffix
    dst = Path(dst)
    dst.mkdir(parents=True, exist_ok=True)
    for i, image in enumerate(images):
        if images.shape[-1] == 1:
            pil_image = Image.fromarray(image[..., 0])
        else:
            pil_image = Image.fromarray(image)
        if file_names:
            cur_dst = Path(dst, "{}.png".format(file_names[i]))
        else:
            cur_dst = Path(dst, "{:05d}.png".format(i))
        if not overwrite:
            if cur_dst.exists():
                continue
        pil_image.save(str(cur_dst))


def load_image(path, as_float=False, as_grayscale=False, as_bgr=False):
    """
    loads an image from a single file
    :param path: path to file
    :param as_float: if True, converts image to float
    :param as_grayscale: if True, converts the image to a single intensity channel
    :param as_bgr: if True, color images are returned in OpenCV channel order (BGR) instead of RGB
    :return: (H x W x C) array
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError("Path does not exist")
    if path.is_dir():
        raise FileNotFoundError("Path must be a file")
    image = load_images(
        [path], as_float=as_float, as_grayscale=as_grayscale, as_bgr=as_bgr
    )
    return image[0]


def load_images(
    source, as_float=False, return_paths=False, as_grayscale=False, as_bgr=False
):
    """
    loads images from a list of paths or a folder, sorted by name so a capture session keeps its projection order
    :param source: path to folder with images / list of paths
    :param as_float: if True, converts images to float (and normalizes to [0, 1])
    :param return_paths: if True, returns a list of file paths
    :param as_grayscale: if True, converts images to a single intensity channel
    :param as_bgr: if True, color images are returned in OpenCV channel order (BGR) instead of RGB.
    color captures passed to GrayCode.decode / process are read as BGR, so load them with as_bgr=True (or as_grayscale=True)
    :return: (b x H x W x C) array, and optionally a list of file names
    """
    supported_suffixes = [".png", ".jpg", ".jpeg", ".tiff", ".bmp"]
    if type(source) == list or type(source) == tuple or type(source) == np.ndarray:
        paths = []
        for p in source:
            p = Path(p)
            if not p.exists():
                raise FileNotFoundError("Path does not exist: {}".format(p))
            paths.append(p)
    else:  # path to a folder
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError("Path does not exist: {}".format(path))
        if not path.is_dir():
            raise FileNotFoundError(
                "Path must be a folder or a list/tuple/array of paths"
            )
        paths = sorted(path.iterdir())
    images = []
    file_paths = []
    for p in paths:
        if p.suffix.lower() not in supported_suffixes:
            continue
        im = Image.open(str(p))
        if im.mode == "P" or im.mode == "RGBA":
            im = im.convert("RGB")
        im_array = np.array(im)
        if im_array.ndim == 2:  # mode was "L"
            im_array = im_array[:, :, None]
        elif as_grayscale:
            im_array = cv2.cvtColor(im_array, cv2.COLOR_RGB2GRAY)[:, :, None]
        elif as_bgr:
            im_array = cv2.cvtColor(im_array, cv2.COLOR_RGB2BGR)
        images.append(im_array)
        file_paths.append(p)
    if len(images) == 0:
        raise FileNotFoundError("no images were found in {}".format(source))
    images = np.stack(images, axis=0)
    if as_float:
        images = to_float(images)
    if return_paths:
        return images, file_paths
    else:
        return images
