import os
import pickle

import pytest

from dltools import evaluate_saved_networks
from dltools.main import build_network, main
from dltools.networks.networks import PPONetworkContinuousSimple, PPONetworkDiscreteSimple, QNetworkSimple


def env_info(continuous):
    return {'state_size': 3, 'action_size': 2, 'is_action_continuous': continuous,
            'action_low': None, 'action_high': None}


def test_build_network():
    assert isinstance(build_network('dql', env_info(False)), QNetworkSimple)
    assert isinstance(build_network('ppo', env_info(False)), PPONetworkDiscreteSimple)
    assert isinstance(build_network('ppo', env_info(True)), PPONetworkContinuousSimple)
    with pytest.raises(ValueError):
        build_network('dql', env_info(True))
    with pytest.raises(ValueError):
        build_network('a3c', env_info(False))


def test_unknown_algorithm_is_rejected():
    with pytest.raises(SystemExit):
        main(['--algorithm', 'a3c'])


def test_train_then_evaluate_saved_network(in_tmp_dir):
    results = main(['--algorithm', 'dql', '--env', 'cartpole', '--episodes', '2', '--device', 'cpu', '--seeds', '1', '2'])
    assert len(results) == 2
    assert all(len(r['train_rewards']) == 2 for r in results)
    run_dirs = os.listdir(in_tmp_dir / 'results')
    assert all(name.startswith('dql_cartpole_') for name in run_dirs)

    latest = evaluate_saved_networks.discover_latest_run_dir('results', 'dql', 'cartpole')
    assert latest is not None
    assert evaluate_saved_networks.discover_latest_run_dir('results', 'ppo', 'cartpole') is None

    results_path = evaluate_saved_networks.main(['--algorithms', 'dql', '--env', 'cartpole', '--seeds', '3'])
    with open(results_path, 'rb') as f:
        evaluation = pickle.load(f)
    assert evaluation['env_name'] == 'cartpole'
    assert evaluation['algorithms']['dql']['raw_scores'][0] > 0
    assert evaluation['algorithms']['dql']['run_dir'] == latest


def test_ppo_on_continuous_env(in_tmp_dir):
    results = main(['--algorithm', 'ppo', '--env', 'pendulum', '--episodes', '1', '--device', 'cpu'])
    assert len(results) == 1
    assert len(results[0]['train_rewards']) == 1
