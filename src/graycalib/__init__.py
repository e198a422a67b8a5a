__version__ = "0.1.0"

from .core import (
    is_np,
    is_float,
    to_np,
    to_8b,
    to_float,
    to_gray,
    frames_to_gray,
)

from .graycalib_io import (
    write_to_json,
    save_image,
    save_images,
    load_image,
    load_images,
)

from .procam import (
    DEFAULT_MASK_THRESHOLD,
    DEFAULT_MIN_POINT_COUNT,
    DEFAULT_AMBIGUITY_THRESHOLD,
    DEFAULT_MESH_REFINEMENT_COUNT,
    DEFAULT_MESH_REFINEMENT_DIST_LIMIT,
    MAX_ERROR_LEVEL,
    bit_count,
    extract_mask,
    decode_bitplane,
    DecoderState,
    decode_axis,
    error_histogram,
    select_error_threshold,
    select_correspondences,
    decode_correspondences,
    correspondences_to_forward_map,
    GrayCode,
    process,
)
