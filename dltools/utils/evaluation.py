"""
Evaluation utilities for the dltools trainers.
Contains greedy policy evaluation on Gymnasium environments.
"""

import numpy as np


def evaluate_policy(select_action, env, num_episodes=10, episode_seeds=None):
    """
    Evaluate a policy in the given environment.
    Returns mean and std of rewards and episode lengths.

    Args:
        select_action: Callable mapping an observation to an environment action
        env: Environment to evaluate in
        num_episodes: Number of episodes to evaluate
        episode_seeds: Optional list of reset seeds, one per episode

    Returns:
        Dictionary with evaluation statistics
    """
    if episode_seeds is not None and len(episode_seeds) < num_episodes:
        raise ValueError(f"Got {len(episode_seeds)} seeds for {num_episodes} episodes")

    episode_rewards = []
    episode_lengths = []

    for episode in range(num_episodes):
        seed = int(episode_seeds[episode]) if episode_seeds is not None else None
        obs, _ = env.reset(seed=seed)

        done = False
        episode_reward = 0.0
        episode_length = 0

        while not done:
            action = select_action(obs)
            obs, reward, terminated, truncated, _ = env.step(action)
            episode_reward += float(reward)
            episode_length += 1
            done = terminated or truncated

        episode_rewards.append(episode_reward)
        episode_lengths.append(episode_length)

    return {
        'mean_reward': np.mean(episode_rewards),
        'std_reward': np.std(episode_rewards),
        'mean_length': np.mean(episode_lengths),
        'std_length': np.std(episode_lengths)
    }
