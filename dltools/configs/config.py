"""
Unified configuration file for the dltools trainers.
Contains all shared configuration parameters and constants.
"""

import os
from datetime import datetime

# --- Environment Configurations ---
ENV_CONFIGS = {
    'cartpole': {
        'name': 'CartPole',
        'env_id': 'CartPole-v1',
        'max_episode_steps': 500
    },
    'pendulum': {
        'name': 'Pendulum',
        'env_id': 'Pendulum-v1',
        'max_episode_steps': 200
    },
    'acrobot': {
        'name': 'Acrobot',
        'env_id': 'Acrobot-v1',
        'max_episode_steps': 500
    }
}

DEFAULT_ENV = {
    'dql': 'cartpole',
    'ppo': 'cartpole'
}

# --- Training Hyperparameters ---
TRAINING_PARAMS = {
    'dql': {
        'num_episodes': 500,
        'eval_freq': 100,
        'num_eval_episodes': 5,
        'update_freq': 1,
        'target_update_freq': 500,
        'batch_size': 64,
        'buffer_capacity': 50000,
        'max_step_horizon': 2048,
        'env_seed': 42,
        'batch_seed': 0,
        'random_seed': 42
    },
    'ppo': {
        'num_episodes': 500,
        'eval_freq': 100,
        'num_eval_episodes': 5,
        'batch_size': 64,
        'buffer_capacity': 2048,
        'epochs': 4,
        'max_step_horizon': 2048,
        'env_seed': 42,
        'batch_seed': 0,
        'random_seed': 42
    },
    'gan': {
        'batch_size': 32,
        'buffer_capacity': 50000,
        'batch_seed': 0,
        'random_seed': 42
    },
    'simple_nn': {
        'batch_size': 32,
        'buffer_capacity': 50000,
        'batch_seed': 0,
        'random_seed': 42
    }
}

# --- Network Architecture Parameters ---
NETWORK_PARAMS = {
    'hidden_dim': 64,
    'num_layers': 2,
    'initial_weight_scale': 0.01,
    'gamma': 0.99,
    'epsilon_start': 1.0,
    'epsilon_end': 0.05,
    'epsilon_decay': 20000,
    'learning_rate': {
        'dql': 0.0005,
        'ppo': 0.0003,
        'generator': 0.0002,
        'discriminator': 0.0002,
        'simple_nn': 0.001
    },
    'grad_clip_norm': 10.0
}

# --- Algorithm-specific Parameters ---
ALGORITHM_PARAMS = {
    'ppo': {
        'gae_lambda': 0.95,
        'clip_epsilon': 0.2,
        'value_loss_weight': 1.0,
        'entropy_loss_weight': 0.0
    },
    'gan': {
        'noise_size': 8,
        'generator_l2_loss_factor': 0.0,
        'use_prediction_in_training': False
    }
}

# --- File Paths ---
RESULTS_DIR = 'results'
LOG_DIR = 'logs'

# --- Utility Functions ---
def get_training_params(algorithm):
    """Get training parameters for a specific algorithm."""
    return TRAINING_PARAMS.get(algorithm, TRAINING_PARAMS['dql'])

def get_network_params():
    """Get network architecture parameters."""
    return NETWORK_PARAMS

def get_algorithm_params(algorithm):
    """Get algorithm-specific parameters."""
    return ALGORITHM_PARAMS.get(algorithm, {})

def get_env_config(name):
    """Get an environment configuration by short name or by Gymnasium id."""
    if name in ENV_CONFIGS:
        return ENV_CONFIGS[name]
    for config in ENV_CONFIGS.values():
        if config['env_id'] == name:
            return config
    return {'name': name, 'env_id': name}

def create_results_dir(algorithm, env_name):
    """Create results directory for a specific algorithm and environment."""
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    dir_name = f'{algorithm}_{env_name}_{timestamp}'
    os.makedirs(RESULTS_DIR, exist_ok=True)
    return os.path.join(RESULTS_DIR, dir_name)

def create_log_file(algorithm):
    """Create log file for a specific algorithm."""
    os.makedirs(LOG_DIR, exist_ok=True)
    return os.path.join(LOG_DIR, f'{algorithm}_output.txt')
