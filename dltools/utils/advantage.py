"""
Reward processing used by the PPO trainer.
"""

import numpy as np

from dltools.utils.errors import ShapeMismatch


def general_advantage_estimation(rewards, values, gamma, lam, next_value):
    """
    Generalized Advantage Estimation over one episode or rollout segment.

        delta[t] = r[t] + gamma * v[t+1] - v[t]     (v[T] = next_value)
        A[t]     = delta[t] + gamma * lam * A[t+1]  (A[T] = 0)

    lam=0 gives the one-step TD advantage, lam=1 the Monte-Carlo return
    minus the value baseline.

    Args:
        rewards: Rewards r[0..T-1]
        values: Value estimates v[0..T-1]
        gamma: Discount factor
        lam: GAE trace decay
        next_value: Bootstrap value of the state after the last step,
            0 when that step ended the episode

    Returns:
        Advantages A[0..T-1] as a float32 array
    """
    rewards = np.asarray(rewards, dtype=np.float64).reshape(-1)
    values = np.asarray(values, dtype=np.float64).reshape(-1)
    if rewards.shape != values.shape:
        raise ShapeMismatch(f"Got {len(rewards)} rewards but {len(values)} values")

    advantages = np.zeros(len(rewards), dtype=np.float32)
    last_advantage = 0.0
    next_v = float(next_value)
    for t in reversed(range(len(rewards))):
        delta = rewards[t] + gamma * next_v - values[t]
        last_advantage = delta + gamma * lam * last_advantage
        advantages[t] = last_advantage
        next_v = values[t]
    return advantages


def advantage_targets(rewards, values, gamma, lam, next_value):
    """
    GAE advantages together with the critic regression targets.

    Returns:
        Tuple (advantages, target_values) where target_values = advantages + values
    """
    advantages = general_advantage_estimation(rewards, values, gamma, lam, next_value)
    target_values = advantages + np.asarray(values, dtype=np.float32).reshape(-1)
    return advantages, target_values.astype(np.float32)


def discounted_rewards(rewards, gamma, next_value=0.0):
    """Discounted return of every step, bootstrapped with next_value."""
    rewards = np.asarray(rewards, dtype=np.float64).reshape(-1)
    returns = np.zeros(len(rewards), dtype=np.float32)
    running = float(next_value)
    for t in reversed(range(len(rewards))):
        running = rewards[t] + gamma * running
        returns[t] = running
    return returns
