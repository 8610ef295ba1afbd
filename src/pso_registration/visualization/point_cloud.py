"""
Point Cloud Visualization Tools

This module provides visualization tools for registration inputs and results:
static cloud overlays, the optimizer's cost history, and a live viewer that
redraws the source cloud at the swarm's best transform every generation.
"""

from typing import Optional, Sequence

import numpy as np
import plotly.graph_objects as go
import pyvista as pv

from ..alignment.transform import RigidTransform

# Optional Qt-based interactive plotter
try:
    from pyvistaqt import BackgroundPlotter  # type: ignore
except Exception:  # pragma: no cover
    BackgroundPlotter = None  # type: ignore

BACKENDS = ('plotly', 'pyvista', 'pyvistaqt')


def _downsample(point_cloud: np.ndarray, sample_size: Optional[int], rng: Optional[np.random.Generator] = None) -> np.ndarray:
    if not sample_size or sample_size >= len(point_cloud):
        return point_cloud
    rng = rng if rng is not None else np.random.default_rng(0)
    indices = rng.choice(len(point_cloud), sample_size, replace=False)
    return point_cloud[indices]


def _get_plotter(backend: str, title: str = "PSO Viewer"):
    if backend == 'pyvistaqt':
        if BackgroundPlotter is None:
            raise ImportError("pyvistaqt is not installed. Install with 'pip install pyvistaqt PySide6'.")
        return BackgroundPlotter(title=title)
    return pv.Plotter(title=title)


class PointCloudVisualizer:
    """A class for visualizing point cloud data using different backends."""

    def __init__(self, backend: str = 'plotly'):
        """
        Args:
            backend: 'plotly', 'pyvista', or 'pyvistaqt'
        """
        if backend not in BACKENDS:
            raise ValueError(
                f"Unsupported backend: '{backend}'. Choose 'plotly', 'pyvista', or 'pyvistaqt'."
            )
        self.backend = backend

    # ----------------- Public API -----------------
    def visualize_clouds(self, point_clouds: list[np.ndarray], names: list[str], sample_size: int | None = None):
        if len(point_clouds) != len(names):
            raise ValueError("The number of point clouds must match the number of names.")
        point_clouds = [_downsample(pc, sample_size) for pc in point_clouds]
        if self.backend == 'plotly':
            self._visualize_plotly(point_clouds, names)
        else:
            self._visualize_pyvista(point_clouds, names)

    def visualize_registration(
        self,
        source: np.ndarray,
        target: np.ndarray,
        transform: RigidTransform,
        sample_size: int | None = None,
    ):
        """Overlay the target and the source before and after applying ``transform``."""
        self.visualize_clouds(
            [target, source, transform.apply(source)],
            ["target", "source (initial)", "source (aligned)"],
            sample_size=sample_size,
        )

    # ----------------- Internal helpers -----------------
    def _visualize_plotly(self, point_clouds: list[np.ndarray], names: list[str]):
        fig = go.Figure()
        for pc, name in zip(point_clouds, names):
            fig.add_trace(go.Scatter3d(
                x=pc[:, 0], y=pc[:, 1], z=pc[:, 2],
                mode='markers',
                marker=dict(size=1),
                name=name,
            ))
        fig.update_layout(
            title="Point Cloud Visualization",
            scene=dict(
                xaxis=dict(visible=False), yaxis=dict(visible=False), zaxis=dict(visible=False), aspectmode='data'
            ),
        )
        fig.show(renderer="browser")

    def _visualize_pyvista(self, point_clouds: list[np.ndarray], names: list[str]):
        plotter = _get_plotter(self.backend, title="Point Cloud Visualization")
        colors = ['green', 'blue', 'red', 'yellow', 'purple', 'orange']
        for i, (pc, name) in enumerate(zip(point_clouds, names)):
            plotter.add_mesh(
                pv.PolyData(pc),
                label=name,
                color=colors[i % len(colors)],
                render_points_as_spheres=False,
                point_size=3,
                lighting=False,
            )
        plotter.add_legend()
        plotter.show()


def cost_history_figure(cost_history: Sequence[float], title: str = "Global best cost per generation") -> go.Figure:
    """Build a plotly line chart of the swarm's global-best cost history (log scale)."""
    costs = np.asarray(cost_history, dtype=float)
    generations = np.arange(1, len(costs) + 1)
    fig = go.Figure(data=go.Scatter(x=generations, y=costs, mode='lines+markers', name='best cost'))
    fig.update_layout(title=title, xaxis_title='Generation', yaxis_title='Robust cost')
    if costs.size and np.all(costs[np.isfinite(costs)] > 0):
        fig.update_yaxes(type='log')
    return fig


def plot_cost_history(cost_history: Sequence[float], title: str = "Global best cost per generation") -> None:
    cost_history_figure(cost_history, title=title).show(renderer="browser")


class LiveRegistrationViewer:
    """
    One-way visualization sink for a running registration.

    Target is drawn green, source blue and an optional ground truth red. Call
    ``update`` once per generation with the swarm's best transform; nothing is
    fed back to the optimizer.

    With the 'plotly' backend no window stays open during the run: the last
    transform received is rendered once on ``close``.
    """

    def __init__(
        self,
        source: np.ndarray,
        target: np.ndarray,
        ground_truth: Optional[np.ndarray] = None,
        *,
        backend: str = 'pyvista',
        sample_size: Optional[int] = None,
    ):
        if backend not in BACKENDS:
            raise ValueError(
                f"Unsupported backend: '{backend}'. Choose 'plotly', 'pyvista', or 'pyvistaqt'."
            )
        self.backend = backend
        self._source = _downsample(np.asarray(source, dtype=float), sample_size)
        self._target = _downsample(np.asarray(target, dtype=float), sample_size)
        self._ground_truth = (
            None if ground_truth is None or len(ground_truth) == 0
            else _downsample(np.asarray(ground_truth, dtype=float), sample_size)
        )
        self._last_transform = RigidTransform.identity()
        self._plotter = None
        self._source_poly = None

    def open(self) -> "LiveRegistrationViewer":
        if self.backend == 'plotly' or self._plotter is not None:
            return self
        plotter = _get_plotter(self.backend)
        plotter.set_background('white')
        plotter.add_mesh(pv.PolyData(self._target), color='green', point_size=3, lighting=False, label='target')
        self._source_poly = pv.PolyData(self._source.copy())
        plotter.add_mesh(self._source_poly, color='blue', point_size=3, lighting=False, label='source')
        if self._ground_truth is not None:
            plotter.add_mesh(pv.PolyData(self._ground_truth), color='red', point_size=3, lighting=False, label='ground truth')
        if self.backend == 'pyvista':
            plotter.show(interactive_update=True)
        self._plotter = plotter
        return self

    def update(self, transform: RigidTransform) -> None:
        """Redraw the source cloud at ``transform``."""
        self._last_transform = transform
        if self._plotter is None:
            return
        self._source_poly.points = transform.apply(self._source)
        self._plotter.update()

    def close(self) -> None:
        if self.backend == 'plotly':
            PointCloudVisualizer('plotly').visualize_registration(
                self._source, self._target, self._last_transform
            )
            return
        if self._plotter is not None:
            self._plotter.close()
            self._plotter = None

    def __enter__(self) -> "LiveRegistrationViewer":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
