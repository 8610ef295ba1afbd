"""
Tests for the command-line registration driver.
"""

from pathlib import Path
import importlib.util
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from pso_registration.alignment.transform import RigidTransform, load_transform_matrix, rotation_error_deg

SCRIPT = Path(__file__).parent.parent / "scripts" / "run_registration.py"


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("run_registration", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def cloud_files(tmp_path):
    rng = np.random.default_rng(0)
    target = rng.normal(size=(200, 3)) * np.array([1.0, 0.5, 0.2])
    true = RigidTransform.from_params(np.array([0.0, 0.0, np.radians(5.0), 0.05, 0.0, 0.0]))
    source = true.inverse().apply(target)
    np.save(tmp_path / "source.npy", source)
    np.save(tmp_path / "target.npy", target)
    return tmp_path, true


def test_cli_flags_override_config(cli):
    args = cli.parse_args(["a.pcd", "b.pcd", "-p", "7", "-e", "3", "-d", "2.0", "-i", "4", "-c", "0.5",
                           "-n", "2", "-s", "0.1", "--seed", "11", "--no-viewer"])
    cfg = cli.build_config(args)

    assert cfg.registration.num_particles == 7
    assert cfg.registration.num_generations == 3
    assert cfg.registration.dof == 2.0
    assert cfg.registration.n_iter == 4
    assert cfg.registration.cost_drop_thresh == 0.5
    assert cfg.registration.n_cost_drop_it == 2
    assert cfg.registration.seed == 11
    assert cfg.input.source_filter_size == 0.1
    assert cfg.input.target_filter_size == 0.0
    assert not cfg.visualization.enabled


def test_main_returns_error_on_missing_input(cli, cloud_files):
    tmp_path, _ = cloud_files
    code = cli.main([str(tmp_path / "missing.npy"), str(tmp_path / "target.npy"), "--no-viewer"])
    assert code == 1


def test_main_returns_error_on_invalid_option(cli, cloud_files):
    tmp_path, _ = cloud_files
    code = cli.main([str(tmp_path / "source.npy"), str(tmp_path / "target.npy"), "-d", "0", "--no-viewer"])
    assert code == 1


def test_main_continues_without_ground_truth(cli, cloud_files):
    tmp_path, _ = cloud_files
    code = cli.main([
        str(tmp_path / "source.npy"), str(tmp_path / "target.npy"),
        "-p", "3", "-e", "1", "-i", "2", "--seed", "0", "--no-viewer",
        "-g", str(tmp_path / "missing_gt.npy"), "--output", str(tmp_path / "aligned.npy"),
    ])
    assert code == 0


def test_main_writes_aligned_cloud_and_transform(cli, cloud_files, capsys):
    tmp_path, true = cloud_files
    config = tmp_path / "narrow.yaml"
    config.write_text("registration:\n  init_rotation_deg: 10.0\n  init_translation_range: 0.1\n", encoding="utf-8")
    output = tmp_path / "out" / "aligned.npy"
    transform_path = tmp_path / "out" / "T.txt"

    code = cli.main([
        str(tmp_path / "source.npy"), str(tmp_path / "target.npy"),
        "-p", "6", "-e", "3", "-i", "20", "--seed", "0", "--no-viewer",
        "--config", str(config), "--output", str(output), "--save-transform", str(transform_path),
    ])

    assert code == 0
    assert np.load(output).shape == (200, 3)
    assert rotation_error_deg(load_transform_matrix(transform_path), true) < 1.0
    # One progress line after init plus one per generation
    assert capsys.readouterr().out.count("Generation") == 4
