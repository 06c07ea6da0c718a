import zipfile

import pytest

from conftest import make_image_bytes
from imgshrink.compression.compress import main


@pytest.fixture
def image_dir(tmp_path):
    directory = tmp_path / "in"
    directory.mkdir()
    (directory / "one.jpg").write_bytes(make_image_bytes(80, 60, 'JPEG', quality=95))
    (directory / "two.png").write_bytes(make_image_bytes(80, 60, 'PNG', seed=2))
    return directory


def test_quality_run_writes_outputs(tmp_path, image_dir, capsys):
    output_dir = tmp_path / "out"
    code = main(["--input", str(image_dir), "--output_dir", str(output_dir), "--quality", "60"])

    assert code == 0
    assert (output_dir / "one.jpg").exists()
    assert len(list(output_dir.iterdir())) == 2
    assert "Compressed 2/2 images" in capsys.readouterr().out


def test_target_size_run_with_archive(tmp_path, image_dir):
    output_dir = tmp_path / "out"
    archive = tmp_path / "all.zip"
    code = main(["--input", str(image_dir / "two.png"), "--output_dir", str(output_dir),
                 "--method", "targetSize", "--target_size", "8", "--format", "png",
                 "--archive", str(archive)])

    assert code == 0
    with zipfile.ZipFile(archive) as zipf:
        assert zipf.namelist() == ["two.png"]


def test_target_size_requires_size(image_dir, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--input", str(image_dir), "--method", "targetSize"])

    assert excinfo.value.code == 2
    assert "--target_size" in capsys.readouterr().err


def test_quality_out_of_range(image_dir):
    with pytest.raises(SystemExit):
        main(["--input", str(image_dir), "--quality", "150"])


def test_no_images_returns_error(tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()
    assert main(["--input", str(empty), "--output_dir", str(tmp_path / "out")]) == 1


def test_corrupt_only_input_returns_error(tmp_path, capsys):
    bad = tmp_path / "bad.png"
    bad.write_bytes(b"nope")

    assert main(["--input", str(bad), "--output_dir", str(tmp_path / "out")]) == 1
    assert "Error with bad.png" in capsys.readouterr().out


def test_preview_dir(tmp_path, image_dir):
    previews = tmp_path / "previews"
    main(["--input", str(image_dir / "one.jpg"), "--output_dir", str(tmp_path / "out"),
          "--preview_dir", str(previews)])

    assert (previews / "one_preview.png").exists()


def test_same_named_inputs_are_all_written(tmp_path):
    for sub, seed in (("a", 3), ("b", 4)):
        (tmp_path / sub).mkdir()
        (tmp_path / sub / "x.png").write_bytes(make_image_bytes(40, 30, 'PNG', seed=seed))
    (tmp_path / "b" / "x.gif").write_bytes(make_image_bytes(40, 30, 'GIF', seed=5))
    output_dir = tmp_path / "out"

    code = main(["--input", str(tmp_path / "a"), str(tmp_path / "b"), "--output_dir", str(output_dir),
                 "--format", "png"])

    assert code == 0
    assert sorted(p.name for p in output_dir.iterdir()) == ["x.png", "x_1.png", "x_2.png"]


def test_results_follow_input_order(tmp_path, capsys):
    for name in ("b.png", "a.png"):
        (tmp_path / name).write_bytes(make_image_bytes(40, 30, 'PNG'))

    main(["--input", str(tmp_path / "b.png"), str(tmp_path / "a.png"), "--output_dir", str(tmp_path / "out"),
          "--format", "png"])

    out = capsys.readouterr().out
    assert out.index("b.png -> b.png") < out.index("a.png -> a.png")


@pytest.mark.parametrize("size", ["inf", "nan", "0"])
def test_unusable_target_size_is_an_argument_error(image_dir, size, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--input", str(image_dir), "--method", "targetSize", "--target_size", size])

    assert excinfo.value.code == 2
    assert "--target_size" in capsys.readouterr().err
