import numpy as np
import cv2
from pathlib import Path
from .core import to_np, to_8b, to_gray, frames_to_gray
from .graycalib_io import save_image, write_to_json

DEFAULT_MASK_THRESHOLD = 40
DEFAULT_MIN_POINT_COUNT = 100
DEFAULT_AMBIGUITY_THRESHOLD = 5
DEFAULT_MESH_REFINEMENT_COUNT = 3
DEFAULT_MESH_REFINEMENT_DIST_LIMIT = 10
MAX_ERROR_LEVEL = 4  # error levels at or above this are never used


def bit_count(length):
    """
    number of gray code bit-planes needed to address length pixels, i.e. ceil(log2(length))
    :param length: projector width or height in pixels
    :return: int
    """
    if length < 1:
        raise ValueError("length must be positive")
    return int(np.ceil(np.log2(length)))


def extract_mask(
    white_frame, black_frame, use_otsu=True, threshold=DEFAULT_MASK_THRESHOLD
):
    """
    computes a mask of the camera pixels that are lit by the projector
    :param white_frame: capture of an all-white projection, (h, w), (h, w, 1) or (h, w, 3) BGR uint8
    :param black_frame: capture of an all-black projection, same dimensions as white_frame
    :param use_otsu: if True, the threshold is chosen automatically (gaussian blur + Otsu's method)
    :param threshold: fixed threshold on white - black, used when use_otsu is False
    :return: (h, w) uint8 mask, 255 where the projector illuminates the surface and 0 elsewhere
    """
    white = np.ascontiguousarray(to_gray(white_frame))
    black = np.ascontiguousarray(to_gray(black_frame))
    if white.shape != black.shape:
        raise ValueError("white_frame and black_frame must have the same dimensions")
    if not 0 <= threshold <= 255:
        raise ValueError("threshold must be between 0 and 255")
    difference = cv2.subtract(white, black)  # saturates negative values to 0
    if use_otsu:
        difference = cv2.GaussianBlur(difference, (5, 5), 0)
        _, mask = cv2.threshold(
            difference, 0, 255, cv2.THRESH_BINARY | cv2.THRESH_OTSU
        )
    else:
        _, mask = cv2.threshold(difference, threshold, 255, cv2.THRESH_BINARY)
    return mask


def decode_bitplane(coordinate, parity, error, difference, threshold, weight):
    """
    applies a single gray code bit-plane to per pixel decoding state.
    works element-wise on numpy arrays as well as on scalars.
    :param coordinate: decoded bits of the axis so far (unsigned ints)
    :param parity: running reflected binary parity of the axis (bools)
    :param error: worst ambiguity weight seen so far (unsigned ints)
    :param difference: signed pattern - inverted pattern intensity difference
    :param threshold: differences strictly inside (-threshold, threshold) are ambiguous
    :param weight: error weight of this bit-plane (1 for the least significant plane)
    :return: new (coordinate, parity, error)
    """
    coordinate = np.asarray(coordinate)
    error = np.asarray(error)
    difference = np.asarray(difference, dtype=np.int32)
    raw_bit = difference >= 0
    parity = np.not_equal(parity, raw_bit)
    coordinate = np.left_shift(coordinate, 1) | parity.astype(coordinate.dtype)
    ambiguous = (difference > -threshold) & (difference < threshold)
    error = np.where(ambiguous & (weight > error), weight, error).astype(error.dtype)
    return coordinate, parity, error


class DecoderState:
    """
    per camera pixel accumulators of a single decode pass.
    all buffers are flat and indexed by y * width + x.
    """

    def __init__(self, cam_wh):
        width, height = cam_wh
        pixel_count = width * height
        self.cam_wh = (width, height)
        self.coordinates = np.zeros((pixel_count, 2), dtype=np.uint32)
        self.parity = np.zeros(pixel_count, dtype=bool)
        self.error = np.zeros(pixel_count, dtype=np.uint8)

    def reset_parity(self):
        self.parity[:] = False

    def apply(self, axis, difference, inside, threshold, weight):
        """
        applies one bit-plane to the pixels where inside is True, other pixels are left untouched
        :param axis: 0 for projector columns (x), 1 for projector rows (y)
        :param difference: flat signed difference image
        :param inside: flat boolean mask
        """
        coordinate, parity, error = decode_bitplane(
            self.coordinates[inside, axis],
            self.parity[inside],
            self.error[inside],
            difference[inside],
            threshold,
            weight,
        )
        self.coordinates[inside, axis] = coordinate
        self.parity[inside] = parity
        self.error[inside] = error


def decode_axis(state, frames, axis, inside, threshold):
    """
    decodes one axis from (pattern, inverted pattern) frame pairs ordered from the most significant bit-plane
    :param state: DecoderState to accumulate into
    :param frames: (2 * n, h, w) uint8 frames
    :param axis: 0 for columns, 1 for rows
    :param inside: flat boolean mask of pixels to decode
    :param threshold: ambiguity threshold
    """
    plane_count = len(frames) // 2
    for plane in range(plane_count):
        # bit-planes depend on the previous plane's parity, keep them in order
        difference = frames[2 * plane].astype(np.int16) - frames[
            2 * plane + 1
        ].astype(np.int16)
        weight = plane_count - plane
        state.apply(axis, difference.ravel(), inside, threshold, weight)


def error_histogram(error, inside=None):
    """
    counts pixels per error level below MAX_ERROR_LEVEL
    :param error: per pixel error levels (any shape)
    :param inside: optional boolean mask of the same size, pixels outside of it are not counted
    :return: (MAX_ERROR_LEVEL,) int64 array
    """
    error = np.asarray(error).ravel()
    if inside is not None:
        error = error[np.asarray(inside).ravel()]
    error = error[error < MAX_ERROR_LEVEL].astype(np.int64)
    return np.bincount(error, minlength=MAX_ERROR_LEVEL)[:MAX_ERROR_LEVEL]


def select_error_threshold(histogram, min_point_count):
    """
    finds the most restrictive error level that still keeps at least min_point_count pixels.
    falls back to the loosest usable level (MAX_ERROR_LEVEL - 1) if none does.
    :param histogram: pixel count per error level (see error_histogram)
    :param min_point_count: minimum number of points wanted
    :return: the allowed error level
    """
    cumulative = np.cumsum(histogram)
    for allowed_error in range(MAX_ERROR_LEVEL):
        if cumulative[allowed_error] >= min_point_count:
            return allowed_error
    return MAX_ERROR_LEVEL - 1


def select_correspondences(
    coordinates, error, inside, cam_wh, proj_wh, min_point_count, verbose=False
):
    """
    filters decoded pixels into camera / projector point pairs
    :param coordinates: flat (h * w, 2) decoded projector coordinates
    :param error: flat (h * w,) error levels
    :param inside: flat (h * w,) boolean mask, pixels outside are never selected
    :param cam_wh: camera (width, height)
    :param proj_wh: projector (width, height)
    :param min_point_count: minimum number of points wanted (best effort)
    :param verbose: if True, prints the histogram and the chosen error level
    :return: camera_points and projector_points, (n, 2) int32 arrays of (x, y) in raster order
    """
    histogram = error_histogram(error, inside)
    allowed_error = select_error_threshold(histogram, min_point_count)
    in_bounds = (coordinates[:, 0] < proj_wh[0]) & (coordinates[:, 1] < proj_wh[1])
    selected = inside & in_bounds & (error <= allowed_error)
    index = np.flatnonzero(selected)
    camera_points = np.stack((index % cam_wh[0], index // cam_wh[0]), axis=-1)
    projector_points = coordinates[index]
    if verbose:
        print("error histogram: {}".format(histogram.tolist()))
        print("allowed error: {}, points: {}".format(allowed_error, len(index)))
    return camera_points.astype(np.int32), projector_points.astype(np.int32)


def decode_correspondences(
    frames,
    mask,
    proj_wh,
    min_point_count=DEFAULT_MIN_POINT_COUNT,
    ambiguity_threshold=DEFAULT_AMBIGUITY_THRESHOLD,
    return_error=False,
    verbose=False,
):
    """
    decodes gray code captures into camera to projector point pairs.
    the point pairs are not deduplicated, several camera pixels may map to the same projector pixel.
    :param frames: pattern captures without the white / black references, column (pattern, inverted) pairs
    from the most significant bit first, then row pairs. a list of frames or a (n, h, w[, c]) array
    :param mask: (h, w) or (h, w, 1) mask, non zero where pixels should be decoded (see extract_mask)
    :param proj_wh: projector's (width, height) in pixels as a tuple
    :param min_point_count: the error threshold is relaxed until at least this many points are found (if possible)
    :param ambiguity_threshold: pattern / inverted differences with a smaller magnitude are considered unreliable
    :param return_error: if True, also returns the (h, w) uint8 error map
    :param verbose: if True, prints decoding statistics
    :return: camera_points and projector_points, parallel (n, 2) int32 arrays of (x, y) in raster order
    """
    frames = frames_to_gray(frames)
    mask = to_np(mask)
    if mask.ndim == 3 and mask.shape[-1] == 1:
        mask = mask[..., 0]
    if mask.ndim != 2:
        raise ValueError("mask must be 2D (h, w)")
    if frames.shape[1:] != mask.shape:
        raise ValueError("frames and mask must have the same dimensions")
    width, height = proj_wh
    if width < 1 or height < 1:
        raise ValueError("proj_wh must be positive")
    if min_point_count <= 0:
        raise ValueError("min_point_count must be positive")
    if ambiguity_threshold <= 0:
        raise ValueError("ambiguity_threshold must be positive")
    column_frames = 2 * bit_count(width)
    row_frames = 2 * bit_count(height)
    if len(frames) < column_frames + row_frames:
        raise ValueError(
            "frames must have length of at least {}".format(column_frames + row_frames)
        )
    cam_wh = (frames.shape[2], frames.shape[1])
    inside = mask.ravel() > 0
    if verbose:
        print(
            "decoding {} column and {} row frames, {} of {} pixels in mask".format(
                column_frames, row_frames, np.count_nonzero(inside), inside.size
            )
        )
    state = DecoderState(cam_wh)
    decode_axis(state, frames[:column_frames], 0, inside, ambiguity_threshold)
    state.reset_parity()
    decode_axis(
        state,
        frames[column_frames : column_frames + row_frames],
        1,
        inside,
        ambiguity_threshold,
    )
    camera_points, projector_points = select_correspondences(
        state.coordinates,
        state.error,
        inside,
        cam_wh,
        proj_wh,
        min_point_count,
        verbose=verbose,
    )
    if return_error:
        return camera_points, projector_points, state.error.reshape(cam_wh[1], cam_wh[0])
    return camera_points, projector_points


def correspondences_to_forward_map(camera_points, projector_points, cam_wh, mode="xy"):
    """
    scatters point pairs into a dense map from camera pixels to projector pixels
    :param camera_points: (n, 2) camera (x, y)
    :param projector_points: (n, 2) projector (x, y)
    :param cam_wh: camera (width, height)
    :param mode: "xy" or "ij" decides the order of last dimension coordinates in the output (ij -> height first, xy -> width first)
    :return: (h, w, 2) int64 map, -1 where a camera pixel has no correspondence
    """
    camera_points = np.asarray(camera_points, dtype=np.int64).reshape(-1, 2)
    projector_points = np.asarray(projector_points, dtype=np.int64).reshape(-1, 2)
    if len(camera_points) != len(projector_points):
        raise ValueError("camera_points and projector_points must have the same length")
    if mode == "xy":
        values = projector_points
    elif mode == "ij":
        values = projector_points[:, ::-1]
    else:
        raise ValueError("mode must be 'ij' or 'xy'")
    forward_map = np.full((cam_wh[1], cam_wh[0], 2), -1, dtype=np.int64)
    forward_map[camera_points[:, 1], camera_points[:, 0]] = values
    return forward_map


class GrayCode:
    """
    a class that handles encoding gray code patterns and decoding their captures into point pairs.
    frame order: all-white, all-black, then (pattern, inverted pattern) per column bit-plane, then per row bit-plane,
    most significant bit-plane first.
    """

    def encode1d(self, length):
        total_bits = bit_count(length)
        x = np.arange(length, dtype=np.uint64)  # [0, 1, 2, ..., length-1]
        gray = x ^ (x >> np.uint64(1))  # Gray code of each x
        shifts = np.arange(total_bits)[::-1].astype(np.uint64)[
            :, None
        ]  # [[MSB], ..., [LSB]]
        bits = ((gray >> shifts) & np.uint64(1)).astype(
            np.uint8
        )  # shape (total_bits, length) -> a binary number per pixel
        return bits * 255

    def frame_count(self, proj_wh):
        """
        :param proj_wh: projector's (width, height) in pixels as a tuple
        :return: number of frames in a full capture session, references included
        """
        return 2 + 2 * bit_count(proj_wh[0]) + 2 * bit_count(proj_wh[1])

    def encode(self, proj_wh):
        """
        encode projector's width and height into gray code patterns
        :param proj_wh: projector's (width, height) in pixels as a tuple
        :return: numpy array of shape (total_images, height, width, 1) uint8, see class docstring for the order
        """
        width, height = proj_wh
        img_white = np.full((height, width), 255, dtype=np.uint8)
        img_black = np.zeros((height, width), dtype=np.uint8)
        all_images = [img_white, img_black]
        for code in self.encode1d(width):
            pattern = np.repeat(code[None, :], height, axis=0)
            all_images += [pattern, 255 - pattern]
        for code in self.encode1d(height):
            pattern = np.repeat(code[:, None], width, axis=1)
            all_images += [pattern, 255 - pattern]
        return np.stack(all_images, axis=0)[..., None]

    def decode(
        self,
        captures,
        proj_wh,
        use_otsu=True,
        mask_threshold=DEFAULT_MASK_THRESHOLD,
        min_point_count=DEFAULT_MIN_POINT_COUNT,
        ambiguity_threshold=DEFAULT_AMBIGUITY_THRESHOLD,
        output_dir=None,
        debug=False,
        verbose=False,
    ):
        """
        decodes a full capture session (references first, see class docstring) into point pairs
        :param captures: list of frames or array of shape (n, height, width[, c]) uint8, color frames are BGR
        :param proj_wh: projector's (width, height) in pixels as a tuple
        :param use_otsu: if True, the foreground threshold is chosen automatically
        :param mask_threshold: fixed foreground threshold on white - black, used when use_otsu is False
        :param min_point_count: the error threshold is relaxed until at least this many points are found (if possible)
        :param ambiguity_threshold: pattern / inverted differences with a smaller magnitude are considered unreliable
        :param output_dir: if not None, saves the point pairs and the forward map to this directory
        :param debug: if True, also saves the mask, the error map and a visualization of the forward map where R=X, G=Y, B=0
        :param verbose: if True, prints decoding statistics
        :return: camera_points and projector_points, parallel (n, 2) int32 arrays of (x, y) in raster order
        """
        captures = frames_to_gray(captures)
        expected = self.frame_count(proj_wh)
        if len(captures) < expected:
            raise ValueError("captures must have length of at least {}".format(expected))
        if output_dir is not None:
            output_dir = Path(output_dir)
            output_dir.mkdir(parents=True, exist_ok=True)
        mask = extract_mask(captures[0], captures[1], use_otsu, mask_threshold)
        camera_points, projector_points, error_map = decode_correspondences(
            captures[2:],
            mask,
            proj_wh,
            min_point_count=min_point_count,
            ambiguity_threshold=ambiguity_threshold,
            return_error=True,
            verbose=verbose,
        )
        if output_dir is not None:
            cam_wh = (captures.shape[2], captures.shape[1])
            forward_map = correspondences_to_forward_map(
                camera_points, projector_points, cam_wh
            )
            np.savez(
                Path(output_dir, "correspondences.npz"),
                camera_points=camera_points,
                projector_points=projector_points,
            )
            np.save(Path(output_dir, "forward_map.npy"), forward_map)
            if debug:
                self.save_debug_info(
                    mask, error_map, forward_map, proj_wh, min_point_count, output_dir
                )
        return camera_points, projector_points

    def save_debug_info(
        self, mask, error_map, forward_map, proj_wh, min_point_count, output_dir
    ):
        inside = mask > 0
        histogram = error_histogram(error_map, inside)
        write_to_json(
            {
                "histogram": histogram.tolist(),
                "allowed_error": select_error_threshold(histogram, min_point_count),
                "point_count": int(np.all(forward_map >= 0, axis=-1).sum()),
            },
            Path(output_dir, "histogram.json"),
        )
        save_image(mask, Path(output_dir, "mask.png"))
        error_normalized = np.minimum(error_map, MAX_ERROR_LEVEL) / MAX_ERROR_LEVEL
        error_normalized[~inside] = 1.0
        save_image(to_8b(error_normalized), Path(output_dir, "error_map.png"))
        forward_normalized = forward_map / np.array([proj_wh[0], proj_wh[1]])
        forward_normalized[forward_map < 0] = 0
        forward_normalized_8b = to_8b(forward_normalized)
        forward_normalized_8b_3c = np.concatenate(
            (forward_normalized_8b, np.zeros_like(forward_normalized_8b[..., :1])),
            axis=-1,
        )
        save_image(forward_normalized_8b_3c, Path(output_dir, "forward_map.png"))


def process(
    frames,
    proj_wh,
    find_maps,
    initial_homography=None,
    mesh_refinement_count=DEFAULT_MESH_REFINEMENT_COUNT,
    mesh_refinement_dist_limit=DEFAULT_MESH_REFINEMENT_DIST_LIMIT,
    use_otsu=True,
    mask_threshold=DEFAULT_MASK_THRESHOLD,
    min_point_count=DEFAULT_MIN_POINT_COUNT,
    ambiguity_threshold=DEFAULT_AMBIGUITY_THRESHOLD,
    output_dir=None,
    debug=False,
    verbose=False,
):
    """
    single point-of-view projector calibration: decodes a capture session and hands the point pairs to a mesh / homography fitting routine.
    :param frames: full capture session (see GrayCode), list of frames or array of shape (n, height, width[, c]) uint8, color frames are BGR
    :param proj_wh: projector's (width, height) in pixels as a tuple
    :param find_maps: callable (camera_points, projector_points, proj_wh, initial_homography, mesh_refinement_count, mesh_refinement_dist_limit) -> (map1, map2)
    :param initial_homography: 3x3 initial camera to projector homography, identity if None
    :param mesh_refinement_count: number of mesh refinement iterations, passed to find_maps
    :param mesh_refinement_dist_limit: mesh refinement distance limit, passed to find_maps
    :return: (map1, map2) as returned by find_maps, e.g. for cv2.remap
    """
    if not callable(find_maps):
        raise TypeError("find_maps must be callable")
    if initial_homography is None:
        initial_homography = np.eye(3)
    else:
        initial_homography = np.asarray(to_np(initial_homography), dtype=np.float64)
        if initial_homography.shape != (3, 3):
            raise ValueError("initial_homography must be 3x3")
    graycode = GrayCode()
    camera_points, projector_points = graycode.decode(
        frames,
        proj_wh,
        use_otsu=use_otsu,
        mask_threshold=mask_threshold,
        min_point_count=min_point_count,
        ambiguity_threshold=ambiguity_threshold,
        output_dir=output_dir,
        debug=debug,
        verbose=verbose,
    )
    if verbose:
        print("total correspondence points: {}".format(len(camera_points)))
    map1, map2 = find_maps(
        camera_points,
        projector_points,
        proj_wh,
        initial_homography,
        mesh_refinement_count,
        mesh_refinement_dist_limit,
    )
    return map1, map2
