import time

import numpy as np
import pandas as pd
import pytest

import compare_images
import plot_results
import raytracer
from run_experiments import parse_stats


def _write(path, buf):
    with open(path, 'w') as f:
        raytracer.write_ppm(buf, f)
    return str(path)


# --- raytracer.py entry point ---

def test_main_writes_ppm_to_stdout(capsys):
    assert raytracer.main(['--width', '4', '--height', '4', '--spheres', '2']) == 0
    captured = capsys.readouterr()
    assert captured.out.startswith("P3\n4 4\n255\n")
    assert len(captured.out.splitlines()) == 3 + 16
    stats = parse_stats(captured.err)
    assert stats["MODE"] == "sequential"
    assert stats["RESOLUTION"] == "4x4"
    assert float(stats["RENDER_TIME_MS"]) >= 0.0
    assert 0.0 <= float(stats["CPU_AVG"]) <= float(stats["CPU_MAX"]) <= 100.0

def test_main_parallel_output_matches_sequential(capsys):
    raytracer.main(['--width', '19', '--height', '11', '--spheres', '4'])
    seq = capsys.readouterr().out
    raytracer.main(['--width', '19', '--height', '11', '--spheres', '4',
                    '--threads', '2', '--tile', '8'])
    captured = capsys.readouterr()
    assert parse_stats(captured.err)["MODE"] == "parallel"
    assert captured.out == seq

def test_main_writes_files(tmp_path, capsys):
    ppm = tmp_path / "out" / "image.ppm"
    png = tmp_path / "out" / "image.png"
    raytracer.main(['--width', '6', '--height', '5', '--spheres', '3',
                    '--outfile', str(ppm), '--png', str(png)])
    assert capsys.readouterr().out == ""
    pixels = raytracer.read_ppm(str(ppm))
    assert pixels.shape == (5, 6, 3)
    assert png.exists()

@pytest.mark.parametrize("argv", [
    ['--width', '1'],
    ['--height', '0'],
    ['--spheres', '1'],
    ['--tile', '0'],
    ['--threads', '0'],
])
def test_main_rejects_degenerate_config(argv, capsys):
    with pytest.raises(SystemExit) as exc:
        raytracer.main(argv)
    assert exc.value.code == 2
    assert "error" in capsys.readouterr().err


# --- CPU sampling ---

def test_summarize_cpu_averages_per_core():
    samples = [[10.0, 30.0], [20.0, 50.0]]
    # per-core averages are 15 and 40
    assert raytracer.summarize_cpu(samples) == (pytest.approx(27.5), 40.0)

def test_summarize_cpu_without_samples_takes_a_reading():
    avg, cpu_max = raytracer.summarize_cpu([])
    assert 0.0 <= avg <= cpu_max <= 100.0

def test_cpu_monitor_collects_samples():
    samples, stop = raytracer.start_cpu_monitor(interval=0.01)
    deadline = time.monotonic() + 5.0
    while not samples and time.monotonic() < deadline:
        time.sleep(0.01)
    stop()
    assert samples
    assert all(len(s) == len(samples[0]) for s in samples)


# --- PPM reading ---

def test_read_ppm_returns_image_order(tmp_path):
    buf = raytracer.render_sequential(raytracer.build_scene(2), 4, 3)
    pixels = raytracer.read_ppm(_write(tmp_path / "a.ppm", buf))
    np.testing.assert_array_equal(pixels, raytracer.to_bytes(buf))

def test_read_ppm_rejects_other_formats(tmp_path):
    path = tmp_path / "bad.ppm"
    path.write_text("P6\n1 1\n255\n0 0 0\n")
    with pytest.raises(ValueError):
        raytracer.read_ppm(str(path))

def test_read_ppm_rejects_truncated_file(tmp_path):
    path = tmp_path / "short.ppm"
    path.write_text("P3\n2 2\n255\n0 0 0\n1 1 1\n")
    with pytest.raises(ValueError):
        raytracer.read_ppm(str(path))


# --- compare_images.py ---

def test_compare_identical(tmp_path, capsys):
    buf = raytracer.render_sequential(raytracer.build_scene(3), 8, 8)
    a = _write(tmp_path / "a.ppm", buf)
    b = _write(tmp_path / "b.ppm", buf)
    assert compare_images.compare(a, b) == (True, 0, None)
    assert compare_images.main([a, b]) == 0
    assert "IDENTICAL" in capsys.readouterr().out

def test_compare_reports_difference(tmp_path):
    buf = raytracer.render_sequential(raytracer.build_scene(3), 8, 8)
    other = buf.copy()
    other[0, 0] = (0.5, 0.0, 0.0)
    a = _write(tmp_path / "a.ppm", buf)
    b = _write(tmp_path / "b.ppm", other)
    diff = tmp_path / "diff.png"
    identical, max_diff, bbox = compare_images.compare(a, b, str(diff))
    assert not identical
    assert max_diff > 0
    # framebuffer row 0 is the bottom image row
    assert bbox == (0, 7, 1, 8)
    assert diff.exists()
    assert compare_images.main([a, b]) == 1

def test_compare_size_mismatch(tmp_path):
    scene = raytracer.build_scene(2)
    a = _write(tmp_path / "a.ppm", raytracer.render_sequential(scene, 4, 4))
    b = _write(tmp_path / "b.ppm", raytracer.render_sequential(scene, 5, 4))
    assert compare_images.main([a, b]) == 1


# --- experiment tooling ---

def test_parse_stats_reads_key_value_lines():
    text = "MODE: parallel\nRENDER_TIME_MS: 12.500\nnoise line\nCPU_AVG: 40.00\n"
    assert parse_stats(text) == {"MODE": "parallel", "RENDER_TIME_MS": "12.500", "CPU_AVG": "40.00"}

@pytest.fixture
def results_csv(tmp_path):
    df = pd.DataFrame({
        "threads": [1, 1, 2, 4, 1, 4],
        "width": [64, 64, 64, 64, 128, 128],
        "height": [64, 64, 64, 64, 128, 128],
        "time_ms": [100.0, 120.0, 55.0, 30.0, 400.0, 110.0],
        "cpu_avg": [10.0, 12.0, 20.0, 40.0, 11.0, 45.0],
        "cpu_max": [100.0, 100.0, 100.0, 100.0, 100.0, 100.0],
    })
    path = tmp_path / "results.csv"
    df.to_csv(path, index=False)
    return str(path)

def test_scaling_table(results_csv):
    df = plot_results.load_results(results_csv)
    g = plot_results.scaling_table(df, 64, 64)
    assert g['threads'].tolist() == [1, 2, 4]
    assert g['time_ms'].tolist() == [110.0, 55.0, 30.0]
    assert g['speedup'].tolist() == pytest.approx([1.0, 2.0, 110.0 / 30.0])
    assert g['efficiency'].tolist() == pytest.approx([1.0, 1.0, 110.0 / 120.0])

def test_plots_are_written(results_csv, tmp_path):
    outdir = tmp_path / "plots"
    df = plot_results.load_results(results_csv)
    plot_results.plot_for_resolution(df, 64, 64, str(outdir))
    plot_results.plot_time_vs_resolution(df, str(outdir))
    assert (outdir / "speedup_vs_threads_64x64.png").exists()
    assert (outdir / "time_vs_resolution.png").exists()
