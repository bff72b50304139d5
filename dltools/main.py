"""
Main training script for the dltools trainers.
Supports deep Q-learning (discrete actions) and PPO (discrete or continuous actions).
"""

import argparse

import numpy as np
import torch

from dltools.configs.config import DEFAULT_ENV, get_env_config, get_network_params, get_training_params
from dltools.environments.env_utils import create_environment, get_env_info
from dltools.networks.networks import QNetworkSimple, PPONetworkDiscreteSimple, PPONetworkContinuousSimple
from dltools.algorithms.dql import TrainerDQL
from dltools.algorithms.ppo import TrainerPPO

ALGORITHMS = ['dql', 'ppo']

def build_network(algorithm, env_info):
    """Create the network an algorithm trains, sized from get_env_info output."""
    network_params = get_network_params()
    kwargs = {
        'num_layers': network_params['num_layers'],
        'hidden_size': network_params['hidden_dim'],
        'initial_weight_scale': network_params['initial_weight_scale'],
    }
    if algorithm == 'dql':
        if env_info['is_action_continuous']:
            raise ValueError("DQL needs a discrete action space")
        return QNetworkSimple(env_info['state_size'], env_info['action_size'], **kwargs)
    if algorithm == 'ppo':
        network_class = PPONetworkContinuousSimple if env_info['is_action_continuous'] else PPONetworkDiscreteSimple
        return network_class(env_info['state_size'], env_info['action_size'], **kwargs)
    raise ValueError(f"Unknown algorithm: {algorithm}")

def run_training(algorithm, env_name, num_episodes=None, device=None, seed=None):
    """Build the environment, network and trainer for one run and train it."""
    env_config = get_env_config(env_name)
    env = create_environment(env_config)
    try:
        env_info = get_env_info(env)
        if seed is not None:
            torch.manual_seed(seed)
        network = build_network(algorithm, env_info)
        rng = np.random.default_rng(seed if seed is not None else get_training_params(algorithm)['batch_seed'])

        if algorithm == 'dql':
            agent = TrainerDQL(network, device=device, rng=rng)
            return agent.train(env, num_episodes=num_episodes, env_name=env_name)
        agent = TrainerPPO(network, device=device, rng=rng)
        return agent.train(env, num_episodes=num_episodes, env_name=env_name,
                           action_low=env_info['action_low'], action_high=env_info['action_high'])
    finally:
        env.close()

def main(argv=None):
    """Main training function."""
    parser = argparse.ArgumentParser(description='Train dltools reinforcement learning agents')
    parser.add_argument('--algorithm', type=str, default='dql', choices=ALGORITHMS,
                        help='Algorithm to train')
    parser.add_argument('--env', type=str, default=None,
                        help='Environment short name (cartpole, pendulum, acrobot) or Gymnasium id')
    parser.add_argument('--episodes', type=int, default=None,
                        help='Number of training episodes (if None, use the configured value)')
    parser.add_argument('--seeds', type=int, nargs='*', default=None,
                        help='Seeds to train with, one run per seed')
    parser.add_argument('--device', type=str, default=None,
                        help='Device to use (cuda/cpu)')

    args = parser.parse_args(argv)

    # Set device
    if args.device is None:
        device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
    else:
        device = torch.device(args.device)

    env_name = args.env or DEFAULT_ENV[args.algorithm]
    seeds = args.seeds if args.seeds else [None]

    print(f"Using device: {device}")
    print(f"Training algorithm: {args.algorithm} on {env_name}")

    all_results = []
    for seed in seeds:
        print(f"\n{'='*50}")
        print(f"Training {args.algorithm.upper()} with seed = {seed}")
        print(f"{'='*50}")

        results = run_training(args.algorithm, env_name, args.episodes, device, seed)
        if results['train_rewards']:
            print(f"Final training reward: {results['train_rewards'][-1]:.4f}")
        all_results.append(results)

    print("\nTraining completed!")
    return all_results

if __name__ == '__main__':
    main()
