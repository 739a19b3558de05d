import numpy as np
from PIL import Image

from imaging.render import normals_to_rgb, save_normals_as_colour_png, save_rendered_scene_as_png, shade_lambertian


def test_normals_to_rgb_blacks_out_missing_normals():
    n = np.full((2, 2, 3), np.nan)
    n[0, 0] = [0.0, 0.0, -1.0]
    rgb = normals_to_rgb(n)
    assert rgb.dtype == np.uint8
    assert rgb[0, 0].tolist() == [127, 127, 0]
    assert rgb[1, 1].tolist() == [0, 0, 0]


def test_lambertian_shading_faces_the_light():
    v = np.zeros((1, 3, 3))
    v[..., 2] = 5.0
    n = np.full((1, 3, 3), np.nan)
    n[0, 0] = [0.0, 0.0, -1.0]  # towards the light
    n[0, 1] = [0.0, 0.0, 1.0]  # away from it
    img = shade_lambertian(v, n, [0.0, 0.0, 0.0], ambient=0.1)
    assert img[0, 0] == 255
    assert img[0, 1] == int(0.1 * 255.0)
    assert img[0, 2] == 0


def test_png_writers(tmp_path):
    v = np.zeros((4, 5, 3))
    n = np.zeros((4, 5, 3))
    n[..., 2] = -1.0
    v[..., 2] = 2.0
    p1 = save_normals_as_colour_png(tmp_path / "out" / "normals.png", n)
    p2 = save_rendered_scene_as_png(tmp_path / "out" / "render.png", v, n, [0.0, 0.0, 0.0])
    with Image.open(p1) as img:
        assert img.size == (5, 4)
        assert img.mode == "RGB"
    with Image.open(p2) as img:
        assert img.size == (5, 4)
        assert img.mode == "L"
