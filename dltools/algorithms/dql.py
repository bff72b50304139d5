"""
Deep Q-learning trainer backed by the named-field replay buffer.
"""

import copy
import os
import pickle

import numpy as np
import torch
import torch.nn as nn
from tqdm import tqdm

from dltools.configs.config import get_training_params, get_network_params, create_results_dir, create_log_file
from dltools.environments.env_utils import flatten_state
from dltools.utils.checkpoint import module_from_bytes, module_to_bytes, save_module
from dltools.utils.evaluation import evaluate_policy
from dltools.utils.replay_buffer import DataInfo, ReplayBuffer
from dltools.utils.visualization import save_training_curve
from dltools.algorithms.learners import adam_learner, set_learning_rate

# State@0, State@1 and the scalars of the current record
SAMPLE_FETCHES = [
    ('State', 0, 'State'),
    ('State', 1, 'NextState'),
    ('Action', 0, 'Action'),
    ('Reward', 0, 'Reward'),
    ('GameEnd', 0, 'GameEnd'),
]

class TrainerDQL:
    """
    Deep Q-learning with epsilon-greedy exploration and a target network.

    Steps of an episode are kept in a history and written to the replay buffer
    when the episode ends, so consecutive records of one episode sit next to
    each other and 'NextState' can be fetched with a time offset of 1. The last
    step of every flushed episode is stored with GameEnd = 0, which zeroes its
    bootstrap term.
    """

    def __init__(self, q_network, learner=None, device=None, buffer_size=None,
                 max_step_horizon=None, discount_factor=None, rng=None):
        """
        Initialize the DQL trainer.

        Args:
            q_network: QNetworkSimple (needs state_size and action_size)
            learner: LearnerDef used to build the optimizer
            device: Device to run networks on
            buffer_size: Replay buffer capacity
            max_step_horizon: Steps after which an episode is cut and flushed
            discount_factor: Reward discount gamma
            rng: numpy Generator used for sampling
        """
        self.device = device if device else torch.device("cuda" if torch.cuda.is_available() else "cpu")

        # Get configuration parameters
        self.training_params = get_training_params('dql')
        self.network_params = get_network_params()

        self.action_rng = np.random.default_rng(self.training_params['random_seed'])
        self.buffer_rng = rng if rng is not None else np.random.default_rng(self.training_params['batch_seed'])

        # Initialize networks
        self.q_network = q_network.to(self.device)
        self.target_network = self._create_target_network()
        if learner is None:
            learner = adam_learner(self.network_params['learning_rate']['dql'])
        self.optimizer = learner.create(self.q_network.parameters())

        self.state_size = q_network.state_size
        self.action_size = q_network.action_size
        self.max_step_horizon = max_step_horizon or self.training_params['max_step_horizon']
        self.discount_factor = self.network_params['gamma'] if discount_factor is None else discount_factor

        # Initialize replay buffer
        self.buffer = ReplayBuffer(buffer_size or self.training_params['buffer_capacity'],
                                   DataInfo('State', self.state_size),
                                   DataInfo('Action', 1),
                                   DataInfo('Reward', 1),
                                   DataInfo('GameEnd', 1),
                                   rng=self.buffer_rng)

        # Episode history
        self.states_history = []
        self.actions_history = []
        self.rewards_history = []
        self.game_end_history = []
        self.episode_step = 0

        self.last_state = None
        self.last_action = None
        self.last_loss = None

        # Training state
        self.global_step = 0
        self.train_steps = 0
        self.train_rewards = []
        self.eval_checkpoints = {}

    def _create_target_network(self):
        target_network = copy.deepcopy(self.q_network)
        target_network.load_state_dict(self.q_network.state_dict())
        return target_network.to(self.device)

    @property
    def data_count_stored(self):
        return self.buffer.current_count

    def compute_epsilon(self):
        """Compute current epsilon value for epsilon-greedy exploration."""
        epsilon_start = self.network_params['epsilon_start']
        epsilon_end = self.network_params['epsilon_end']
        epsilon_decay = self.network_params['epsilon_decay']

        return max(epsilon_end, epsilon_start - (epsilon_start - epsilon_end) * self.global_step / epsilon_decay)

    def evaluate_action(self, states):
        """
        Greedy actions and their Q-values.

        Args:
            states: Flat array holding one or more states

        Returns:
            Tuple (actions, max_qs), both of shape (batch,)
        """
        state_batch = torch.as_tensor(np.asarray(states, dtype=np.float32)).view(-1, self.state_size).to(self.device)
        with torch.no_grad():
            q_values = self.q_network(state_batch)
        max_qs, actions = q_values.max(dim=1)
        return actions.cpu().numpy(), max_qs.cpu().numpy()

    def step(self, state, epsilon=None):
        """
        Choose an action for the current state with epsilon-greedy exploration.

        Args:
            state: Current observation
            epsilon: Exploration rate (if None, use the decayed schedule)

        Returns:
            Action index
        """
        self.last_state = flatten_state(state)
        if epsilon is None:
            epsilon = self.compute_epsilon()
        if self.action_rng.random() < epsilon:
            action = int(self.action_rng.integers(self.action_size))
        else:
            action = int(self.evaluate_action(self.last_state)[0][0])
        self.last_action = action
        return action

    def record(self, reward, terminated, truncated=False):
        """
        Record the outcome of the last step.

        Returns:
            True when the episode is over (terminated, truncated or past the
            step horizon) and its history was written to the replay buffer
        """
        if self.last_state is None:
            raise RuntimeError("record() called before step()")
        self.episode_step += 1
        episode_over = terminated or truncated or self.episode_step >= self.max_step_horizon
        self._add_history(self.last_state, reward, self.last_action, episode_over)
        if episode_over:
            self._update_replay_buffer()
        return episode_over

    def _add_history(self, state, reward, action, game_end):
        self.states_history.append(state)
        self.rewards_history.append(reward)
        self.actions_history.append(action)
        self.game_end_history.append(0.0 if game_end else 1.0)

    def _update_replay_buffer(self):
        if self.states_history:
            self.buffer.add_data(State=np.concatenate(self.states_history),
                                 Action=self.actions_history,
                                 Reward=self.rewards_history,
                                 GameEnd=self.game_end_history)
        self.states_history.clear()
        self.actions_history.clear()
        self.rewards_history.clear()
        self.game_end_history.clear()
        self.episode_step = 0

    def clear_data(self):
        self.buffer.clear_data()

    def train_random_batch(self, batch_size):
        """Sample a random batch from the replay buffer and take one update step."""
        samples = self.buffer.random_sample(batch_size, SAMPLE_FETCHES)
        return self.train_batch(samples['State'], samples['NextState'], samples['Action'],
                                samples['Reward'], samples['GameEnd'])

    def train_batch(self, states, next_states, actions, rewards, game_ends):
        """
        One Q-learning update: Q(s, a) regresses onto r + gamma * GameEnd * max Q_target(s').
        """
        state_batch = torch.as_tensor(states, dtype=torch.float32).view(-1, self.state_size).to(self.device)
        next_state_batch = torch.as_tensor(next_states, dtype=torch.float32).view(-1, self.state_size).to(self.device)
        action_batch = torch.as_tensor(actions).long().view(-1, 1).to(self.device)
        reward_batch = torch.as_tensor(rewards, dtype=torch.float32).view(-1).to(self.device)
        game_end_batch = torch.as_tensor(game_ends, dtype=torch.float32).view(-1).to(self.device)

        # Compute target Q-values
        with torch.no_grad():
            next_max_q = self.target_network(next_state_batch).max(dim=1)[0]
            target = reward_batch + self.discount_factor * game_end_batch * next_max_q

        chosen_q = self.q_network(state_batch).gather(1, action_batch).squeeze(-1)
        loss = nn.MSELoss()(chosen_q, target)

        self.optimizer.zero_grad()
        loss.backward()
        torch.nn.utils.clip_grad_norm_(self.q_network.parameters(),
                                       max_norm=self.network_params['grad_clip_norm'])
        self.optimizer.step()

        self.train_steps += 1
        self.last_loss = loss.item()
        if self.train_steps % 1000 == 0:
            self._log_training_progress(loss, chosen_q, target)
        return self.last_loss

    def _log_training_progress(self, loss, chosen_q, target):
        """Log training progress to file."""
        log_file = create_log_file('dql')
        with open(log_file, 'a') as f:
            f.write(f"[Step {self.global_step}] loss: {loss.item():.6f}\n")
            f.write(f"[Step {self.global_step}] q: mean={chosen_q.mean().item():.4f}, "
                    f"min={chosen_q.min().item():.4f}, max={chosen_q.max().item():.4f}\n")
            f.write(f"[Step {self.global_step}] target: mean={target.mean().item():.4f}, "
                    f"min={target.min().item():.4f}, max={target.max().item():.4f}\n")

    def update_target_network(self):
        self.target_network.load_state_dict(self.q_network.state_dict())

    def _update_target_network(self):
        """Update target network every target_update_freq steps."""
        if self.global_step % self.training_params['target_update_freq'] == 0:
            self.update_target_network()

    def train(self, env, num_episodes=None, env_name='env', save_results=True):
        """
        Main training loop.

        Args:
            env: Gymnasium environment with a discrete action space
            num_episodes: Episodes to run (if None, use the configured value)
            env_name: Name used for the results directory
            save_results: Write results, curve and weights when done

        Returns:
            Dictionary of training results
        """
        num_episodes = num_episodes or self.training_params['num_episodes']
        batch_size = self.training_params['batch_size']
        rng = np.random.default_rng(self.training_params['env_seed'])
        seeds = rng.integers(0, 10000, size=num_episodes, dtype=int).tolist()
        self.update_target_network()

        pbar = tqdm(range(num_episodes), desc='Training DQL')
        for episode in pbar:
            obs, _ = env.reset(seed=seeds[episode])
            done = False
            episode_reward = 0.0

            while not done:
                action = self.step(obs)
                obs, reward, terminated, truncated, _ = env.step(action)
                episode_reward += float(reward)
                done = self.record(reward, terminated, truncated)
                self.global_step += 1

                # Training step, NextState needs one record past the sampled one
                if (self.buffer.current_count > batch_size
                        and self.global_step % self.training_params['update_freq'] == 0):
                    self.train_random_batch(batch_size)

                self._update_target_network()

            self.train_rewards.append(episode_reward)
            pbar.set_postfix(reward=f"{episode_reward:.1f}", epsilon=f"{self.compute_epsilon():.3f}")

            # Periodic evaluation
            if (episode + 1) % self.training_params['eval_freq'] == 0:
                self._evaluate_policy(env, episode + 1)

        results = {
            'train_rewards': self.train_rewards,
            'eval_checkpoints': self.eval_checkpoints,
            'env_name': env_name
        }
        if save_results:
            self._save_results(results, env_name)
        return results

    def _evaluate_policy(self, env, episode):
        """Evaluate the greedy policy."""
        rng = np.random.default_rng(self.training_params['env_seed'])
        seeds = rng.integers(0, 10000, size=self.training_params['num_eval_episodes'], dtype=int).tolist()
        eval_result = evaluate_policy(
            lambda obs: int(self.evaluate_action(flatten_state(obs))[0][0]),
            env,
            num_episodes=self.training_params['num_eval_episodes'],
            episode_seeds=seeds
        )
        self.eval_checkpoints[episode] = eval_result
        print(f"[DQL] Episode {episode} Eval: "
              f"Reward={eval_result['mean_reward']:.2f} ± {eval_result['std_reward']:.2f}")

    def _save_results(self, results, env_name):
        """Save training results, training curve and Q-network weights."""
        results_dir = create_results_dir('dql', env_name)
        os.makedirs(results_dir, exist_ok=True)

        with open(os.path.join(results_dir, 'results.pkl'), 'wb') as f:
            pickle.dump(results, f)

        save_training_curve(self.train_rewards, os.path.join(results_dir, 'training_curve.png'),
                            title=f'DQL Training Reward ({env_name})')
        save_module(os.path.join(results_dir, 'network_parameter', 'q_network.pt'), self.q_network)
        print(f"Results saved to {results_dir}")
        return results_dir

    def set_learning_rate(self, lr):
        set_learning_rate(self.optimizer, lr)

    def save(self):
        return module_to_bytes(self.q_network)

    def restore(self, data):
        module_from_bytes(self.q_network, data, self.device)
        self.update_target_network()
