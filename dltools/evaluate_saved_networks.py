import argparse
import os
import re
import pickle
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np
import torch

from dltools.configs.config import RESULTS_DIR, get_env_config, get_training_params
from dltools.environments.env_utils import create_environment, flatten_state, get_env_info
from dltools.utils.checkpoint import load_module
from dltools.utils.evaluation import evaluate_policy
from dltools.main import ALGORITHMS, build_network


DEFAULT_SEEDS = [11]

# Weight file written by each trainer's _save_results
ALG_TO_WEIGHTS = {
	'dql': 'q_network.pt',
	'ppo': 'ppo_network.pt',
}

# Regex to parse directories like {alg}_{env}_{timestamp}
RUN_DIR_REGEX = re.compile(r'^(?P<alg>[a-z]+)_(?P<env>.+)_(?P<ts>\d{8}_\d{6})$')


def discover_latest_run_dir(results_root: str, alg_key: str, env_name: str) -> Optional[str]:
	"""Return the newest run directory of an algorithm on an environment, or None."""
	if not os.path.isdir(results_root):
		return None
	candidates = []
	for name in os.listdir(results_root):
		match = RUN_DIR_REGEX.match(name)
		if not match:
			continue
		if match.group('alg') != alg_key or match.group('env') != env_name:
			continue
		candidates.append((match.group('ts'), name))
	if not candidates:
		return None
	# Timestamps YYYYMMDD_HHMMSS sort lexicographically
	candidates.sort()
	return os.path.join(results_root, candidates[-1][1])


def load_network_from_run(run_dir: str, alg_key: str, env_info: Dict, device: torch.device):
	"""Instantiate the algorithm's network and load its weights from network_parameter."""
	pt_path = os.path.join(run_dir, 'network_parameter', ALG_TO_WEIGHTS[alg_key])
	if not os.path.isfile(pt_path):
		raise FileNotFoundError(f"Missing checkpoint {pt_path}")
	network = build_network(alg_key, env_info).to(device)
	load_module(pt_path, network, device)
	network.eval()
	return network


def make_greedy_policy(network, alg_key: str, env_info: Dict, device: torch.device):
	"""Map observations to the network's greedy (or mean) action."""
	def select_action(obs):
		state = torch.as_tensor(flatten_state(obs)).view(1, -1).to(device)
		with torch.no_grad():
			if alg_key == 'dql':
				return int(network(state).argmax(dim=1).item())
			if env_info['is_action_continuous']:
				mean, _ = network.policy(state)
				return np.clip(mean[0].cpu().numpy(), env_info['action_low'], env_info['action_high'])
			return int(network.policy(state).argmax(dim=1).item())
	return select_action


def evaluate_algorithms_and_save(algorithms: List[str], env_name: str, seeds: List[int] = DEFAULT_SEEDS,
								 device_str: str = 'cpu', results_root: str = RESULTS_DIR,
								 save_dir: Optional[str] = None):
	"""
	Evaluate the latest checkpoint of each algorithm on env_name using the given seeds.
	Save results to a pickle file for later plotting.
	"""
	device = torch.device(device_str)
	env = create_environment(get_env_config(env_name))
	env_info = get_env_info(env)

	if save_dir is None:
		save_dir = results_root
	os.makedirs(save_dir, exist_ok=True)

	all_results = {
		'timestamp': datetime.now().isoformat(),
		'seeds': seeds,
		'env_name': env_name,
		'algorithms': {}
	}

	try:
		for alg_key in algorithms:
			print(f"\n=== Evaluating Algorithm: {alg_key} ===")
			run_dir = discover_latest_run_dir(results_root, alg_key, env_name)
			if run_dir is None:
				print(f"No runs found for {alg_key} on {env_name} under {results_root}")
				continue
			if alg_key == 'dql' and env_info['is_action_continuous']:
				print(f"Skip {alg_key}: {env_name} has a continuous action space")
				continue

			network = load_network_from_run(run_dir, alg_key, env_info, device)
			select_action = make_greedy_policy(network, alg_key, env_info, device)
			num_episodes = get_training_params(alg_key)['num_eval_episodes']

			seed_scores = []
			for s in seeds:
				# Deterministic episode seeds per evaluation seed
				rng = np.random.default_rng(s)
				arr = rng.integers(0, 10000, size=num_episodes, dtype=int).tolist()
				res = evaluate_policy(select_action, env, num_episodes=len(arr), episode_seeds=arr)
				seed_scores.append(float(res['mean_reward']))

			all_results['algorithms'][alg_key] = {
				'reward': float(np.mean(seed_scores)),
				'error': float(np.std(seed_scores)),
				'raw_scores': seed_scores,
				'run_dir': run_dir
			}
			print(f"  {alg_key}: {np.mean(seed_scores):.2f} ± {np.std(seed_scores):.2f}")
	finally:
		env.close()

	timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
	results_path = os.path.join(save_dir, f'evaluation_results_{env_name}_{timestamp}.pkl')
	with open(results_path, 'wb') as f:
		pickle.dump(all_results, f)

	print(f"\n=== Results saved to {results_path} ===")
	return results_path


def main(argv=None):
	parser = argparse.ArgumentParser(description='Evaluate saved dltools networks')
	parser.add_argument('--algorithms', type=str, nargs='+', default=ALGORITHMS, choices=ALGORITHMS)
	parser.add_argument('--env', type=str, default='cartpole')
	parser.add_argument('--seeds', type=int, nargs='+', default=DEFAULT_SEEDS)
	parser.add_argument('--device', type=str, default='cpu')
	parser.add_argument('--results_root', type=str, default=RESULTS_DIR)
	args = parser.parse_args(argv)
	return evaluate_algorithms_and_save(args.algorithms, args.env, args.seeds, args.device, args.results_root)


if __name__ == '__main__':
	main()
