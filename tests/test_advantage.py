import numpy as np
import pytest

from dltools.utils.advantage import advantage_targets, discounted_rewards, general_advantage_estimation
from dltools.utils.errors import ShapeMismatch


def test_monte_carlo_advantage_with_unit_gamma_and_lambda():
    advantages = general_advantage_estimation([1, 1, 1, 1, 1], [0, 0, 0, 0, 0], 1.0, 1.0, 0.0)
    np.testing.assert_allclose(advantages, [5, 4, 3, 2, 1])
    assert advantages.dtype == np.float32


def test_monte_carlo_advantage_subtracts_values():
    rewards = [1.0, 2.0, 3.0]
    values = [0.5, 1.0, -1.0]
    advantages = general_advantage_estimation(rewards, values, 1.0, 1.0, 0.0)
    returns = np.array([6.0, 5.0, 3.0])
    np.testing.assert_allclose(advantages, returns - np.array(values))


def test_empty_trajectory_returns_empty_arrays():
    advantages = general_advantage_estimation([], [], 0.99, 0.95, 1.0)
    assert advantages.shape == (0,)
    advantages, targets = advantage_targets([], [], 0.99, 0.95, 1.0)
    assert advantages.shape == (0,)
    assert targets.shape == (0,)


def test_zero_lambda_gives_one_step_td_error():
    rewards = [1.0, 0.0, 2.0]
    values = [0.5, 0.25, 1.0]
    gamma, next_value = 0.9, 3.0
    advantages = general_advantage_estimation(rewards, values, gamma, 0.0, next_value)
    expected = [
        1.0 + gamma * 0.25 - 0.5,
        0.0 + gamma * 1.0 - 0.25,
        2.0 + gamma * next_value - 1.0,
    ]
    np.testing.assert_allclose(advantages, expected, rtol=1e-6)


def test_bootstrap_value_is_discounted_into_every_step():
    advantages = general_advantage_estimation([0, 0], [0, 0], 0.5, 1.0, 8.0)
    np.testing.assert_allclose(advantages, [2.0, 4.0])


def test_general_gamma_lambda_matches_recursion():
    rewards = np.array([0.3, -1.0, 2.0, 0.5])
    values = np.array([0.1, 0.2, -0.4, 0.7])
    gamma, lam, next_value = 0.95, 0.8, 0.6
    next_values = np.append(values[1:], next_value)
    deltas = rewards + gamma * next_values - values
    expected = np.zeros(4)
    running = 0.0
    for t in reversed(range(4)):
        running = deltas[t] + gamma * lam * running
        expected[t] = running
    np.testing.assert_allclose(general_advantage_estimation(rewards, values, gamma, lam, next_value),
                               expected, rtol=1e-5)


def test_advantage_targets_add_values():
    rewards = [1.0, 1.0, 1.0]
    values = [0.5, 0.5, 0.5]
    advantages, targets = advantage_targets(rewards, values, 0.9, 0.95, 0.0)
    np.testing.assert_allclose(targets, advantages + np.array(values, dtype=np.float32))
    assert targets.dtype == np.float32


def test_lambda_one_targets_are_discounted_returns():
    rewards = [1.0, 2.0, 3.0]
    values = [0.2, -0.3, 0.4]
    _, targets = advantage_targets(rewards, values, 0.9, 1.0, 1.5)
    np.testing.assert_allclose(targets, discounted_rewards(rewards, 0.9, 1.5), rtol=1e-5)


def test_length_mismatch_raises_shape_mismatch():
    with pytest.raises(ShapeMismatch):
        general_advantage_estimation([1, 2, 3], [0, 0], 0.99, 0.95, 0.0)


def test_discounted_rewards():
    np.testing.assert_allclose(discounted_rewards([1, 1, 1], 0.5), [1.75, 1.5, 1.0])
    np.testing.assert_allclose(discounted_rewards([0, 0], 0.5, next_value=4.0), [1.0, 2.0])
