# shows how to calibrate a projector from a single point of view
import graycalib
from pathlib import Path
import numpy as np
import cv2


def homography_maps(
    camera_points,
    projector_points,
    proj_wh,
    initial_homography,
    mesh_refinement_count,
    mesh_refinement_dist_limit,
):
    # a plain homography fit, a real setup would refine a mesh on top of it
    if len(camera_points) < 4:
        raise RuntimeError("too few correspondence points were found (less than 4)")
    h_mat, _ = cv2.findHomography(
        projector_points.astype(np.float32),
        camera_points.astype(np.float32),
        cv2.RANSAC,
        float(mesh_refinement_dist_limit),
    )
    h_mat = h_mat @ initial_homography
    X, Y = np.meshgrid(np.arange(proj_wh[0]), np.arange(proj_wh[1]))
    points = np.stack((X, Y, np.ones_like(X)), axis=-1).reshape(-1, 3).astype(np.float64)
    mapped = points @ h_mat.T
    mapped = (mapped[:, :2] / mapped[:, 2:]).reshape(proj_wh[1], proj_wh[0], 2)
    return mapped[..., 0].astype(np.float32), mapped[..., 1].astype(np.float32)


if __name__ == "__main__":
    # instantiate a gray code object
    gray = graycalib.GrayCode()
    # set projector resolution
    proj_wh = (800, 600)
    # generate the gray code patterns, white and black first, then column and row pattern pairs
    patterns = gray.encode(proj_wh)
    # save the patterns for projection and capturing
    graycalib.save_images(patterns, "resource/patterns/")
    ### start capture time ###
    # project these patterns in order and capture each with the camera
    # the captured images should be saved in a folder with increasing numbers as names
    ### end capture time ###
    captures = graycalib.load_images(Path("resource/captures"), as_grayscale=True)
    map1, map2 = graycalib.process(
        captures,
        proj_wh,
        homography_maps,
        output_dir="resource/decoded",
        debug=True,
        verbose=True,
    )
    # warp any camera-space image into projector space
    desired = graycalib.load_image("resource/desired.png")
    warped = cv2.remap(desired, map1, map2, cv2.INTER_LINEAR)
    graycalib.save_image(warped, "resource/warped.png")
