import pytest
import graycalib
import numpy as np
import torch
from pathlib import Path


def test_encode():
    gray = graycalib.GrayCode()
    patterns = gray.encode((64, 32))
    assert patterns.shape == (24, 32, 64, 1)
    assert patterns.dtype == np.uint8
    assert np.all(patterns[0] == 255)
    assert np.all(patterns[1] == 0)
    # every pattern is followed by its inverse
    np.testing.assert_array_equal(patterns[2::2], 255 - patterns[3::2])
    # column patterns vary along x only, row patterns along y only
    assert np.all(patterns[2:14] == patterns[2:14, :1])
    assert np.all(patterns[14:] == patterns[14:, :, :1])
    # MSB column pattern splits the projector in half
    assert np.all(patterns[2, :, :32] == 0)
    assert np.all(patterns[2, :, 32:] == 255)


def test_encode1d():
    gray = graycalib.GrayCode()
    codes = gray.encode1d(8)
    assert codes.shape == (3, 8)
    values = (codes // 255).astype(np.int64)
    gray_values = values[0] * 4 + values[1] * 2 + values[2]
    np.testing.assert_array_equal(gray_values, [0, 1, 3, 2, 6, 7, 5, 4])
    assert gray.encode1d(1).shape == (0, 1)


def test_extract_mask_fixed():
    white = np.zeros((20, 30), dtype=np.uint8)
    white[:, 10:] = 100
    black = np.full((20, 30), 10, dtype=np.uint8)
    black[:, 25:] = 200  # brighter than white, clamps to zero
    mask = graycalib.extract_mask(white, black, use_otsu=False, threshold=40)
    assert mask.shape == (20, 30)
    assert mask.dtype == np.uint8
    assert np.all(mask[:, :10] == 0)
    assert np.all(mask[:, 10:25] == 255)
    assert np.all(mask[:, 25:] == 0)
    mask = graycalib.extract_mask(white, black, use_otsu=False, threshold=95)
    assert np.all(mask == 0)


def test_extract_mask_otsu():
    white = np.full((40, 40), 20, dtype=np.uint8)
    white[:, 20:] = 220
    black = np.full((40, 40), 10, dtype=np.uint8)
    mask = graycalib.extract_mask(white, black, use_otsu=True)
    assert np.all(mask[:, :15] == 0)
    assert np.all(mask[:, 25:] == 255)


def test_extract_mask_color():
    white = np.full((10, 10, 3), 200, dtype=np.uint8)
    black = np.zeros((10, 10, 3), dtype=np.uint8)
    mask = graycalib.extract_mask(white, black, use_otsu=False)
    assert mask.shape == (10, 10)
    assert np.all(mask == 255)
    with pytest.raises(ValueError):
        graycalib.extract_mask(white, black[:5])
    with pytest.raises(ValueError):
        graycalib.extract_mask(white, black, use_otsu=False, threshold=300)


def test_decode_end_to_end():
    gray = graycalib.GrayCode()
    proj_wh = (64, 32)
    captures = gray.encode(proj_wh)
    assert len(captures) == 24
    camera_points, projector_points = gray.decode(
        captures, proj_wh, use_otsu=False, min_point_count=10
    )
    assert len(camera_points) == len(projector_points) == 64 * 32
    assert tuple(camera_points[0]) == (0, 0)
    assert tuple(projector_points[0]) == (0, 0)
    assert tuple(camera_points[-1]) == (63, 31)
    np.testing.assert_array_equal(camera_points, projector_points)


def test_decode_color_and_torch():
    gray = graycalib.GrayCode()
    proj_wh = (16, 16)
    captures = gray.encode(proj_wh)
    expected = gray.decode(captures, proj_wh, use_otsu=False, min_point_count=10)
    bgr = np.repeat(captures, 3, axis=-1)
    result = gray.decode(bgr, proj_wh, use_otsu=False, min_point_count=10)
    np.testing.assert_array_equal(result[0], expected[0])
    np.testing.assert_array_equal(result[1], expected[1])
    result = gray.decode(
        torch.from_numpy(captures), proj_wh, use_otsu=False, min_point_count=10
    )
    np.testing.assert_array_equal(result[1], expected[1])
    result = gray.decode(list(captures), proj_wh, use_otsu=False, min_point_count=10)
    np.testing.assert_array_equal(result[1], expected[1])


def test_decode_dark_region():
    gray = graycalib.GrayCode()
    proj_wh = (32, 32)
    captures = gray.encode(proj_wh).copy()
    captures[:, :, :8] = 0  # the projector does not reach these camera pixels
    camera_points, projector_points = gray.decode(
        captures, proj_wh, use_otsu=False, min_point_count=10
    )
    assert len(camera_points) == 32 * 24
    assert np.all(camera_points[:, 0] >= 8)
    np.testing.assert_array_equal(camera_points, projector_points)


def test_decode_invalid():
    gray = graycalib.GrayCode()
    captures = gray.encode((32, 32))
    with pytest.raises(ValueError):
        gray.decode(captures[:-1], (32, 32))
    with pytest.raises(ValueError):
        gray.decode(captures.astype(np.float32), (32, 32))


def test_decode_output_dir(tmp_path):
    gray = graycalib.GrayCode()
    proj_wh = (32, 16)
    captures = gray.encode(proj_wh)
    camera_points, projector_points = gray.decode(
        captures,
        proj_wh,
        use_otsu=False,
        min_point_count=10,
        output_dir=tmp_path,
        debug=True,
        verbose=True,
    )
    assert Path(tmp_path, "correspondences.npz").exists()
    assert Path(tmp_path, "forward_map.npy").exists()
    assert Path(tmp_path, "forward_map.png").exists()
    assert Path(tmp_path, "mask.png").exists()
    assert Path(tmp_path, "error_map.png").exists()
    assert Path(tmp_path, "histogram.json").exists()
    saved = np.load(Path(tmp_path, "correspondences.npz"))
    np.testing.assert_array_equal(saved["camera_points"], camera_points)
    np.testing.assert_array_equal(saved["projector_points"], projector_points)
    forward_map = np.load(Path(tmp_path, "forward_map.npy"))
    assert forward_map.shape == (16, 32, 2)
    mask = graycalib.load_image(Path(tmp_path, "mask.png"))
    assert mask.shape == (16, 32, 1)
    assert np.all(mask == 255)


def test_forward_map():
    camera_points = np.array([[0, 0], [2, 1]])
    projector_points = np.array([[5, 6], [7, 8]])
    forward_map = graycalib.correspondences_to_forward_map(
        camera_points, projector_points, (3, 2)
    )
    assert forward_map.shape == (2, 3, 2)
    assert forward_map.dtype == np.int64
    np.testing.assert_array_equal(forward_map[0, 0], [5, 6])
    np.testing.assert_array_equal(forward_map[1, 2], [7, 8])
    assert np.count_nonzero(np.all(forward_map == -1, axis=-1)) == 4
    forward_map = graycalib.correspondences_to_forward_map(
        camera_points, projector_points, (3, 2), mode="ij"
    )
    np.testing.assert_array_equal(forward_map[1, 2], [8, 7])
    with pytest.raises(ValueError):
        graycalib.correspondences_to_forward_map(
            camera_points, projector_points, (3, 2), mode="uv"
        )
    with pytest.raises(ValueError):
        graycalib.correspondences_to_forward_map(
            camera_points, projector_points[:1], (3, 2)
        )


def test_process():
    gray = graycalib.GrayCode()
    proj_wh = (32, 16)
    captures = gray.encode(proj_wh)
    calls = []

    def find_maps(
        camera_points,
        projector_points,
        proj_wh,
        initial_homography,
        mesh_refinement_count,
        mesh_refinement_dist_limit,
    ):
        calls.append(
            (
                camera_points,
                projector_points,
                proj_wh,
                initial_homography,
                mesh_refinement_count,
                mesh_refinement_dist_limit,
            )
        )
        map1 = np.zeros((proj_wh[1], proj_wh[0]), dtype=np.float32)
        map2 = np.ones((proj_wh[1], proj_wh[0]), dtype=np.float32)
        return map1, map2

    map1, map2 = graycalib.process(
        captures,
        proj_wh,
        find_maps,
        mesh_refinement_count=5,
        mesh_refinement_dist_limit=12,
        use_otsu=False,
        min_point_count=10,
    )
    assert map1.shape == map2.shape == (16, 32)
    assert len(calls) == 1
    camera_points, projector_points, wh, homography, count, dist_limit = calls[0]
    assert len(camera_points) == 32 * 16
    np.testing.assert_array_equal(camera_points, projector_points)
    assert wh == proj_wh
    np.testing.assert_array_equal(homography, np.eye(3))
    assert count == 5
    assert dist_limit == 12


def test_process_invalid():
    gray = graycalib.GrayCode()
    captures = gray.encode((8, 8))
    with pytest.raises(TypeError):
        graycalib.process(captures, (8, 8), None)
    with pytest.raises(ValueError):
        graycalib.process(
            captures, (8, 8), lambda *args: (None, None), initial_homography=np.eye(2)
        )


def test_process_list_inputs():
    gray = graycalib.GrayCode()
    proj_wh = (8, 8)
    captures = gray.encode(proj_wh)
    calls = []

    def find_maps(camera_points, projector_points, proj_wh, initial_homography, *args):
        calls.append(initial_homography)
        return None, None

    graycalib.process(
        captures,
        proj_wh,
        find_maps,
        initial_homography=[[1, 0, 0], [0, 1, 0], [0, 0, 1]],
        use_otsu=False,
        min_point_count=10,
    )
    assert calls[0].dtype == np.float64
    np.testing.assert_array_equal(calls[0], np.eye(3))
    camera_points, projector_points = graycalib.decode_correspondences(
        captures[2:], [[255] * 8] * 8, proj_wh, min_point_count=10
    )
    assert len(camera_points) == 64
    np.testing.assert_array_equal(camera_points, projector_points)
