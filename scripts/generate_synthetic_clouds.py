"""
Generate a synthetic registration problem with a known rigid misalignment.

- Samples an anisotropic, non-symmetric shape (a bent slab with a bump).
- The ground truth is the source in the target frame; the target is the ground
  truth with optional noise and outliers.
- The source is the shape moved by a random rigid transform (rotation of a few
  tens of degrees + translation), which the registration has to undo.
- Writes source/target/ground_truth clouds and the true transform to an output folder.

Example:
    python scripts/generate_synthetic_clouds.py --out data/synthetic --angle 30 --format pcd
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np

sys.path.append(str(Path(__file__).parent.parent / "src"))

from pso_registration.alignment.transform import RigidTransform, save_transform_matrix
from pso_registration.utils.export import save_point_cloud


def make_shape(n_points: int = 2000, seed: int = 42) -> np.ndarray:
    rng = np.random.default_rng(seed)
    u = rng.uniform(-1.0, 1.0, n_points)
    v = rng.uniform(-0.5, 0.5, n_points)
    # Bent slab with an off-centre bump: no rotational symmetry
    z = 0.3 * u ** 2 + 0.25 * np.exp(-((u - 0.4) ** 2 + (v + 0.2) ** 2) / 0.02)
    z += 0.02 * rng.standard_normal(n_points)
    return np.column_stack([u * 2.0, v, z])


def random_transform(angle_deg: float, translation_norm: float, seed: int = 7) -> RigidTransform:
    rng = np.random.default_rng(seed)
    axis = rng.normal(size=3)
    axis /= np.linalg.norm(axis)
    direction = rng.normal(size=3)
    direction /= np.linalg.norm(direction)
    params = np.concatenate([axis * np.radians(angle_deg), direction * translation_norm])
    return RigidTransform.from_params(params)


def main():
    parser = argparse.ArgumentParser(description="Generate a synthetic PSO registration problem")
    parser.add_argument("--out", type=str, default="data/synthetic", help="Output directory")
    parser.add_argument("--points", type=int, default=2000, help="Number of points per cloud")
    parser.add_argument("--angle", type=float, default=30.0, help="Rotation angle of the misalignment (degrees)")
    parser.add_argument("--translation", type=float, default=0.5, help="Translation norm of the misalignment")
    parser.add_argument("--noise", type=float, default=0.0, help="Gaussian noise std added to the target")
    parser.add_argument("--outliers", type=float, default=0.0, help="Fraction of target points replaced by outliers")
    parser.add_argument("--format", type=str, default="pcd", choices=["pcd", "npy", "xyz", "las", "laz"])
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    rng = np.random.default_rng(args.seed)
    ground_truth = make_shape(args.points, seed=args.seed)

    target = ground_truth.copy()
    if args.noise > 0:
        target += args.noise * rng.standard_normal(target.shape)
    if args.outliers > 0:
        n_out = int(args.outliers * len(target))
        idx = rng.choice(len(target), n_out, replace=False)
        lo, hi = target.min(axis=0), target.max(axis=0)
        target[idx] = rng.uniform(lo - 0.5, hi + 0.5, size=(n_out, 3))

    # Misalignment: the registration should recover its inverse
    misalignment = random_transform(args.angle, args.translation, seed=args.seed + 1)
    source = misalignment.apply(ground_truth)

    out = Path(args.out)
    ext = f".{args.format}"
    save_point_cloud(source, str(out / f"source{ext}"))
    save_point_cloud(target, str(out / f"target{ext}"))
    save_point_cloud(ground_truth, str(out / f"ground_truth{ext}"))
    save_transform_matrix(misalignment.inverse(), out / "true_transform.txt")
    print(f"Wrote synthetic registration problem to {out} ({misalignment!r})")


if __name__ == "__main__":
    main()
