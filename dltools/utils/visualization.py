"""
Visualization utilities for the dltools trainers.
Plots training reward curves and evaluation checkpoints from saved results.
"""

import os
import pickle
import numpy as np
import matplotlib.pyplot as plt
from typing import Dict, List, Optional, Tuple
from pathlib import Path


def moving_average(values, window):
    """Trailing moving average; the first window-1 points average what is available."""
    values = np.asarray(values, dtype=np.float64)
    if window <= 1 or len(values) == 0:
        return values
    cumsum = np.cumsum(np.insert(values, 0, 0.0))
    result = np.empty(len(values))
    for i in range(len(values)):
        start = max(0, i + 1 - window)
        result[i] = (cumsum[i + 1] - cumsum[start]) / (i + 1 - start)
    return result


def save_training_curve(rewards, path, title='Training Reward', window=10):
    """Plot per-episode rewards with a moving average and save the figure."""
    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    plt.figure(figsize=(12, 6))
    plt.plot(rewards, alpha=0.4, label='Training Reward')
    if len(rewards) >= window:
        plt.plot(moving_average(rewards, window), label=f'Moving Average ({window})')
    plt.xlabel('Episode')
    plt.ylabel('Reward')
    plt.title(title)
    plt.legend()
    plt.savefig(path)
    plt.close()


class TrainingVisualizer:
    """
    Loads results.pkl files written by the trainers and compares runs.
    Expects directory structure: results/{algorithm}_{env_name}_{timestamp}/results.pkl
    """

    def __init__(self, results_dir: str = "results"):
        """
        Initialize the visualizer.

        Args:
            results_dir: Directory containing run directories
        """
        self.results_dir = Path(results_dir)
        self.results = {}

    def load_results(self, algorithm: str, env_name: Optional[str] = None) -> Dict[str, dict]:
        """
        Load result files for a specific algorithm.

        Args:
            algorithm: Algorithm name (e.g., 'dql', 'ppo')
            env_name: Only load runs on this environment (if None, load all)

        Returns:
            Dictionary mapping run directory name to its results
        """
        prefix = f"{algorithm}_{env_name}_" if env_name else f"{algorithm}_"
        if not self.results_dir.is_dir():
            raise FileNotFoundError(f"Results directory {self.results_dir} does not exist")
        run_dirs = sorted(d for d in self.results_dir.iterdir() if d.is_dir() and d.name.startswith(prefix))

        loaded = {}
        for run_dir in run_dirs:
            results_file = run_dir / "results.pkl"
            if not results_file.exists():
                print(f"Warning: No results.pkl found in {run_dir.name}")
                continue
            with open(results_file, 'rb') as f:
                loaded[run_dir.name] = pickle.load(f)

        if not loaded:
            raise FileNotFoundError(f"No result files found for {algorithm} in {self.results_dir}")

        self.results.update(loaded)
        print(f"Loaded {len(loaded)} result files for {algorithm}")
        return loaded

    def extract_eval_curves(self) -> Dict[str, Tuple[List[int], List[float]]]:
        """
        Returns:
            Dictionary: {run_name: (episodes, mean_rewards)}
        """
        curves = {}
        for run_name, results in self.results.items():
            checkpoints = results.get('eval_checkpoints', {})
            episodes = sorted(checkpoints)
            curves[run_name] = (episodes, [checkpoints[ep]['mean_reward'] for ep in episodes])
        return curves

    def plot_training_curves(self, save_path: Optional[str] = None, window: int = 10,
                             figsize: Tuple[int, int] = (12, 6)):
        """Overlay the smoothed training reward of every loaded run."""
        plt.figure(figsize=figsize)
        for run_name, results in sorted(self.results.items()):
            rewards = results.get('train_rewards', [])
            if len(rewards) > 0:
                plt.plot(moving_average(rewards, window), linewidth=2, label=run_name)
        plt.xlabel('Episode')
        plt.ylabel(f'Reward (moving average {window})')
        plt.title('Training Reward')
        plt.grid(True, alpha=0.3)
        plt.legend()

        if save_path is None:
            save_path = self.results_dir / 'training_curves.png'
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        plt.close()
        print(f"Saved training curves to {save_path}")
        return save_path

    def plot_eval_curves(self, save_path: Optional[str] = None, figsize: Tuple[int, int] = (12, 6)):
        """Plot mean evaluation reward at every checkpoint of every loaded run."""
        plt.figure(figsize=figsize)
        for run_name, (episodes, rewards) in sorted(self.extract_eval_curves().items()):
            if episodes:
                plt.plot(episodes, rewards, marker='o', linewidth=2, markersize=6, label=run_name)
        plt.xlabel('Episode')
        plt.ylabel('Mean Evaluation Reward')
        plt.title('Evaluation Reward')
        plt.grid(True, alpha=0.3)
        plt.legend()

        if save_path is None:
            save_path = self.results_dir / 'eval_curves.png'
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        plt.close()
        print(f"Saved evaluation curves to {save_path}")
        return save_path
