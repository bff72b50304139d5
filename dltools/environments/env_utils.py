"""
Environment utilities for the dltools trainers.
Contains environment creation, space inspection, and observation processing.
"""

import numpy as np
import gymnasium as gym


def create_environment(config):
    """
    Create a Gymnasium environment with the given configuration.

    Args:
        config: Dictionary containing 'env_id' and optionally 'max_episode_steps'
            and 'render_mode'

    Returns:
        Gymnasium environment
    """
    kwargs = {}
    if config.get('max_episode_steps') is not None:
        kwargs['max_episode_steps'] = config['max_episode_steps']
    if config.get('render_mode') is not None:
        kwargs['render_mode'] = config['render_mode']
    return gym.make(config['env_id'], **kwargs)

def flatten_state(obs):
    """
    Convert an observation to a flat float32 state vector.

    Args:
        obs: Observation returned by the environment

    Returns:
        1-D float32 array
    """
    return np.asarray(obs, dtype=np.float32).reshape(-1)

def get_env_info(env):
    """
    Get basic information about the environment's state and action spaces.

    Args:
        env: Environment instance

    Returns:
        Dictionary containing state_size, action_size and is_action_continuous
    """
    obs_space = env.observation_space
    action_space = env.action_space
    if isinstance(action_space, gym.spaces.Discrete):
        action_size = int(action_space.n)
        is_continuous = False
    elif isinstance(action_space, gym.spaces.Box):
        action_size = int(np.prod(action_space.shape))
        is_continuous = True
    else:
        raise ValueError(f"Unsupported action space: {action_space}")

    return {
        'state_size': int(np.prod(obs_space.shape)),
        'action_size': action_size,
        'is_action_continuous': is_continuous,
        'action_low': getattr(action_space, 'low', None),
        'action_high': getattr(action_space, 'high', None)
    }
