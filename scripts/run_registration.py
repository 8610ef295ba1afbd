"""
Command-line driver for PSO point cloud registration

Loads a source and a target cloud, optionally voxel-filters them, runs the
particle swarm for the requested number of generations while showing progress
(and, optionally, a live viewer), then writes the aligned source cloud.
"""

import sys
import argparse
import logging
import time
from pathlib import Path

import numpy as np

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from pso_registration.acceleration import ParticleParallelExecutor
from pso_registration.alignment import RegistrationProblem, build_swarm, save_transform_matrix
from pso_registration.exceptions import ConfigurationError, DegenerateGeometryError, LoadError
from pso_registration.preprocessing.loader import PointCloudLoader
from pso_registration.utils.config import AppConfig, load_config, with_overrides
from pso_registration.utils.export import save_point_cloud
from pso_registration.utils.logging import set_package_log_level, setup_logger
from pso_registration.utils.point_cloud_filters import get_filter_statistics, voxel_grid_filter


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="PSO Parameters: particle swarm point cloud registration")
    parser.add_argument("source", type=str, help="The path of the source point cloud")
    parser.add_argument("target", type=str, help="The path of the target point cloud")
    parser.add_argument("-s", "--source-filter-size", type=float, default=None,
                        help="The leaf size of the voxel filter of the source cloud")
    parser.add_argument("-t", "--target-filter-size", type=float, default=None,
                        help="The leaf size of the voxel filter of the target cloud")
    parser.add_argument("-p", "--num-part", type=int, default=None,
                        help="The number of particles of the swarm")
    parser.add_argument("-e", "--num-it", type=int, default=None,
                        help="The number of iterations (generations) of the algorithm")
    parser.add_argument("-g", "--ground-truth", type=str, default=None,
                        help="The path of the ground truth for the source cloud, if available")
    parser.add_argument("-i", "--num-iter", type=int, default=None,
                        help="The maximum number of local refinement iterations per evaluation")
    parser.add_argument("-d", "--dof", type=float, default=None,
                        help="The degree of freedom of the t-distribution")
    parser.add_argument("-c", "--cost-drop-threshold", type=float, default=None,
                        help="If the cost drop stays below this threshold for too many iterations, "
                             "the local refinement terminates")
    parser.add_argument("-n", "--num-drop-iter", type=int, default=None,
                        help="The maximum number of iterations during which the cost drop is allowed "
                             "to be under the cost drop threshold")
    parser.add_argument("--config", type=str, default=None,
                        help="Path to YAML configuration file (defaults to config/default.yaml)")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the swarm random generator")
    parser.add_argument("--output", type=str, default=None, help="Where to write the aligned source cloud")
    parser.add_argument("--save-transform", type=str, default=None,
                        help="Optional text file for the final 4x4 transform")
    parser.add_argument("--workers", type=int, default=None,
                        help="Evaluate particles in this many worker processes")
    parser.add_argument("--no-viewer", action="store_true", help="Disable the live viewer")
    parser.add_argument("--verbose", action="store_true", help="Log local refinement details")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config)
    return with_overrides(cfg, {
        "input.source_filter_size": args.source_filter_size,
        "input.target_filter_size": args.target_filter_size,
        "registration.num_particles": args.num_part,
        "registration.num_generations": args.num_it,
        "registration.n_iter": args.num_iter,
        "registration.dof": args.dof,
        "registration.cost_drop_thresh": args.cost_drop_threshold,
        "registration.n_cost_drop_it": args.num_drop_iter,
        "registration.seed": args.seed,
        "registration.verbose": True if args.verbose else None,
        "output.path": args.output,
        "output.transform_path": args.save_transform,
        "parallel.enabled": True if args.workers else None,
        "parallel.n_workers": args.workers,
        "visualization.enabled": False if args.no_viewer else None,
    })


def load_cloud(loader: PointCloudLoader, path: str, leaf_size: float, logger: logging.Logger) -> np.ndarray:
    points = loader.load_points(path)
    if leaf_size > 0:
        filtered = voxel_grid_filter(points, leaf_size)
        stats = get_filter_statistics(len(points), len(filtered), leaf_size)
        logger.info(
            f"{Path(path).name}: kept {stats['filtered_points']} of {stats['total_points']} points "
            f"({stats['filter_description']}, {stats['percentage']:.1f}%)"
        )
        points = filtered
    return points


def main(argv=None) -> int:
    """
    Main function to run the registration.
    """
    args = parse_args(argv)
    logger = setup_logger("pso_registration.run")

    try:
        cfg = build_config(args)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    # Setup logging from config
    log_level = getattr(logging, cfg.logging.level.upper(), logging.INFO)
    set_package_log_level(log_level, cfg.logging.file)

    loader = PointCloudLoader()
    try:
        logger.info(f"Loading source point cloud from {args.source}")
        source = load_cloud(loader, args.source, cfg.input.source_filter_size, logger)
        logger.info(f"Loading target point cloud from {args.target}")
        target = load_cloud(loader, args.target, cfg.input.target_filter_size, logger)
    except LoadError as e:
        logger.error(f"Could not load point cloud, closing: {e}")
        return 1

    ground_truth = None
    if args.ground_truth:
        logger.info(f"Loading ground truth point cloud from {args.ground_truth}")
        try:
            ground_truth = load_cloud(loader, args.ground_truth, cfg.input.source_filter_size, logger)
        except LoadError as e:
            logger.warning(f"Could not load ground truth, continuing without it: {e}")

    try:
        problem = RegistrationProblem(source, target, cfg.registration)
    except DegenerateGeometryError as e:
        logger.error(f"Cannot register these clouds: {e}")
        return 1

    executor = None
    if cfg.parallel.enabled:
        executor = ParticleParallelExecutor(n_workers=cfg.parallel.n_workers)

    viewer = None
    if cfg.visualization.enabled:
        from pso_registration.visualization import LiveRegistrationViewer

        viewer = LiveRegistrationViewer(
            source,
            target,
            ground_truth,
            backend=cfg.visualization.backend,
            sample_size=cfg.visualization.sample_size,
        ).open()

    start_time = time.time()
    try:
        swarm = build_swarm(problem, executor=executor)
        swarm.init()
        print(swarm)

        best = swarm.get_best()
        for _ in range(cfg.registration.num_generations):
            swarm.evolve()
            best = swarm.get_best()
            print(swarm)
            if viewer is not None:
                viewer.update(best)
    finally:
        if executor is not None:
            executor.close()
        if viewer is not None:
            viewer.close()

    logger.info(
        f"Registration finished in {time.time() - start_time:.1f}s "
        f"({swarm.generation} generations). Best cost: {swarm.best_cost:.6e}"
    )
    logger.info(f"Best transform:\n{np.array2string(best.as_matrix(), precision=6, suppress_small=True)}")

    aligned = best.apply(source)
    if ground_truth is not None:
        if len(ground_truth) == len(aligned):
            rmse = float(np.sqrt(np.mean(np.sum((aligned - ground_truth) ** 2, axis=1))))
            logger.info(f"RMSE against ground truth: {rmse:.6f}")
        else:
            logger.info("Ground truth has a different number of points; skipping RMSE.")

    save_point_cloud(aligned, cfg.output.path)
    if cfg.output.transform_path:
        save_transform_matrix(best, cfg.output.transform_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
