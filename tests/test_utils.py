import os
import pickle

import numpy as np
import pytest
import torch
import gymnasium as gym

from dltools.configs import config
from dltools.environments.env_utils import create_environment, flatten_state, get_env_info
from dltools.networks.networks import SequentialNetworkDense
from dltools.utils.checkpoint import load_module, module_from_bytes, module_to_bytes, save_module
from dltools.utils.evaluation import evaluate_policy
from dltools.utils.visualization import TrainingVisualizer, moving_average, save_training_curve


def test_config_accessors():
    assert config.get_training_params('ppo')['epochs'] > 0
    assert config.get_training_params('unknown') is config.TRAINING_PARAMS['dql']
    assert 0 < config.get_network_params()['gamma'] <= 1
    assert config.get_algorithm_params('ppo')['gae_lambda'] == 0.95
    assert config.get_algorithm_params('unknown') == {}


def test_get_env_config_by_name_or_id():
    assert config.get_env_config('cartpole')['env_id'] == 'CartPole-v1'
    assert config.get_env_config('Pendulum-v1')['name'] == 'Pendulum'
    assert config.get_env_config('MountainCar-v0') == {'name': 'MountainCar-v0', 'env_id': 'MountainCar-v0'}


def test_results_dir_and_log_file(in_tmp_dir):
    results_dir = config.create_results_dir('dql', 'cartpole')
    assert os.path.basename(results_dir).startswith('dql_cartpole_')
    assert os.path.isdir(config.RESULTS_DIR)
    log_file = config.create_log_file('ppo')
    assert log_file == os.path.join(config.LOG_DIR, 'ppo_output.txt')
    assert os.path.isdir(config.LOG_DIR)


def test_env_info_discrete_and_continuous(chain_env, continuous_chain_env):
    info = get_env_info(chain_env)
    assert info['state_size'] == 3
    assert info['action_size'] == 2
    assert not info['is_action_continuous']

    info = get_env_info(continuous_chain_env)
    assert info['action_size'] == 2
    assert info['is_action_continuous']
    np.testing.assert_array_equal(info['action_low'], [-2.0, -2.0])


def test_env_info_rejects_unsupported_action_space(chain_env):
    chain_env.action_space = gym.spaces.MultiBinary(3)
    with pytest.raises(ValueError):
        get_env_info(chain_env)


def test_create_environment():
    env = create_environment({'env_id': 'CartPole-v1', 'max_episode_steps': 20})
    try:
        info = get_env_info(env)
        assert info['state_size'] == 4
        assert info['action_size'] == 2
    finally:
        env.close()


def test_flatten_state():
    state = flatten_state([[1, 2], [3, 4]])
    assert state.dtype == np.float32
    np.testing.assert_array_equal(state, [1, 2, 3, 4])


def test_evaluate_policy(chain_env):
    result = evaluate_policy(lambda obs: 1, chain_env, num_episodes=3, episode_seeds=[1, 2, 3])
    assert result['mean_reward'] == 10.0
    assert result['std_reward'] == 0.0
    assert result['mean_length'] == 10.0
    with pytest.raises(ValueError):
        evaluate_policy(lambda obs: 1, chain_env, num_episodes=3, episode_seeds=[1])


def test_moving_average():
    np.testing.assert_allclose(moving_average([1, 2, 3, 4], 2), [1, 1.5, 2.5, 3.5])
    np.testing.assert_allclose(moving_average([1, 2], 1), [1, 2])


def test_save_training_curve(tmp_path):
    path = tmp_path / 'plots' / 'curve.png'
    save_training_curve(list(range(20)), str(path))
    assert path.exists()


def test_training_visualizer(tmp_path):
    for name, rewards in [('dql_cartpole_20250101_000000', [1, 2, 3]), ('ppo_cartpole_20250101_000000', [4, 5])]:
        run_dir = tmp_path / name
        run_dir.mkdir()
        with open(run_dir / 'results.pkl', 'wb') as f:
            pickle.dump({'train_rewards': rewards,
                         'eval_checkpoints': {2: {'mean_reward': 7.0}, 1: {'mean_reward': 5.0}}}, f)

    visualizer = TrainingVisualizer(str(tmp_path))
    loaded = visualizer.load_results('dql', 'cartpole')
    assert list(loaded) == ['dql_cartpole_20250101_000000']
    assert visualizer.extract_eval_curves()['dql_cartpole_20250101_000000'] == ([1, 2], [5.0, 7.0])
    assert os.path.exists(visualizer.plot_training_curves(window=2))
    assert os.path.exists(visualizer.plot_eval_curves(save_path=str(tmp_path / 'eval.png')))
    with pytest.raises(FileNotFoundError):
        visualizer.load_results('gan')


def test_checkpoint_round_trip(tmp_path):
    torch.manual_seed(0)
    source = SequentialNetworkDense(3, 2)
    target = SequentialNetworkDense(3, 2)
    x = torch.randn(4, 3)

    module_from_bytes(target, module_to_bytes(source))
    torch.testing.assert_close(target(x), source(x))

    other = SequentialNetworkDense(3, 2)
    path = str(tmp_path / 'weights' / 'net.pt')
    save_module(path, source)
    load_module(path, other)
    torch.testing.assert_close(other(x), source(x))
