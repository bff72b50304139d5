import numpy as np
import pytest
import torch
import gymnasium as gym
from gymnasium import spaces


class ChainEnv(gym.Env):
    """Short deterministic episodes: action 1 earns reward 1, the episode ends after `length` steps."""

    def __init__(self, length=10, continuous=False):
        super().__init__()
        self.length = length
        self.continuous = continuous
        self.observation_space = spaces.Box(low=-1.0, high=1.0, shape=(3,), dtype=np.float32)
        if continuous:
            self.action_space = spaces.Box(low=-2.0, high=2.0, shape=(2,), dtype=np.float32)
        else:
            self.action_space = spaces.Discrete(2)
        self.t = 0

    def _obs(self):
        return np.array([self.t / self.length, 1.0, -1.0], dtype=np.float32)

    def reset(self, seed=None, options=None):
        super().reset(seed=seed)
        self.t = 0
        return self._obs(), {}

    def step(self, action):
        if self.continuous:
            action = np.asarray(action)
            assert np.all(action >= -2.0) and np.all(action <= 2.0)
            reward = -float(np.sum(np.square(action - 1.0)))
        else:
            reward = 1.0 if int(action) == 1 else 0.0
        self.t += 1
        terminated = self.t >= self.length
        return self._obs(), reward, terminated, False, {}


@pytest.fixture
def chain_env():
    return ChainEnv()


@pytest.fixture
def continuous_chain_env():
    return ChainEnv(continuous=True)


@pytest.fixture
def cpu():
    return torch.device('cpu')


@pytest.fixture
def in_tmp_dir(tmp_path, monkeypatch):
    """Run in a temporary directory so results/ and logs/ land there."""
    monkeypatch.chdir(tmp_path)
    return tmp_path
