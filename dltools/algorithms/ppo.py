"""
Proximal Policy Optimization trainer with Generalized Advantage Estimation.
"""

import os
import pickle

import numpy as np
import torch
import torch.nn as nn
from tqdm import tqdm

from dltools.configs.config import (get_training_params, get_network_params, get_algorithm_params,
                                    create_results_dir, create_log_file)
from dltools.environments.env_utils import flatten_state
from dltools.utils.advantage import advantage_targets
from dltools.utils.checkpoint import module_from_bytes, module_to_bytes, save_module
from dltools.utils.evaluation import evaluate_policy
from dltools.utils.replay_buffer import DataInfo, ReplayBuffer
from dltools.utils.visualization import save_training_curve
from dltools.algorithms.learners import adam_learner, set_learning_rate

FIELDS = ['State', 'Action', 'ActionProb', 'TargetValue', 'Advantage']
PROB_EPS = 0.0000000001

class TrainerPPO:
    """
    PPO trainer for discrete or continuous actions.

    Each step's state, action, action probability and value estimate go to an
    episode history. When the episode ends (or reaches max_step_horizon) the
    history is turned into advantages and critic targets with GAE and appended
    to the replay buffer, from which minibatches are drawn for the clipped
    surrogate update.
    """

    def __init__(self, network, learner=None, device=None, buffer_size=None, max_step_horizon=None, rng=None):
        """
        Initialize the PPO trainer.

        Args:
            network: PPONetworkDiscreteSimple or PPONetworkContinuousSimple
            learner: LearnerDef used to build the optimizer
            device: Device to run networks on
            buffer_size: Replay buffer capacity
            max_step_horizon: Steps after which an episode is cut and bootstrapped
            rng: numpy Generator used for sampling
        """
        self.device = device if device else torch.device("cuda" if torch.cuda.is_available() else "cpu")

        # Get configuration parameters
        self.training_params = get_training_params('ppo')
        self.network_params = get_network_params()
        algorithm_params = get_algorithm_params('ppo')

        self.reward_discount_factor = self.network_params['gamma']
        self.reward_gae_factor = algorithm_params['gae_lambda']
        self.clip_epsilon = algorithm_params['clip_epsilon']
        self.value_loss_weight = algorithm_params['value_loss_weight']
        self.entropy_loss_weight = algorithm_params['entropy_loss_weight']

        self.network = network.to(self.device)
        if learner is None:
            learner = adam_learner(self.network_params['learning_rate']['ppo'])
        self.optimizer = learner.create(self.network.parameters())

        self.state_size = network.state_size
        self.is_action_continuous = network.is_action_continuous
        self.action_dim = network.action_size if self.is_action_continuous else 1
        self.max_step_horizon = max_step_horizon or self.training_params['max_step_horizon']

        self.buffer_rng = rng if rng is not None else np.random.default_rng(self.training_params['batch_seed'])
        self.buffer = ReplayBuffer(buffer_size or self.training_params['buffer_capacity'],
                                   DataInfo('State', self.state_size),
                                   DataInfo('Action', self.action_dim),
                                   DataInfo('ActionProb', self.action_dim),
                                   DataInfo('TargetValue', 1),
                                   DataInfo('Advantage', 1),
                                   rng=self.buffer_rng)

        # Episode history
        self.states_history = []
        self.rewards_history = []
        self.actions_history = []
        self.action_probs_history = []
        self.values_history = []
        self.episode_step = 0

        self.last_state = None
        self.last_action = None
        self.last_action_probs = None
        self.last_value = None
        self.last_loss = None

        # Training state
        self.global_step = 0
        self.train_rewards = []
        self.eval_checkpoints = {}

    @property
    def data_count_stored(self):
        return self.buffer.current_count

    def _to_state_batch(self, states):
        return torch.as_tensor(np.asarray(states, dtype=np.float32)).view(-1, self.state_size).to(self.device)

    def evaluate_value(self, states):
        """Critic values for one or more flat states, shape (batch,)."""
        with torch.no_grad():
            return self.network.value(self._to_state_batch(states)).cpu().numpy()

    def evaluate_action(self, states, use_probability=True):
        """
        Choose actions for one or more states.

        Args:
            states: Flat array holding one or more states
            use_probability: Sample from the policy; if False take the most likely action

        Returns:
            Tuple (actions, action_probs). Discrete: shapes (batch,) and (batch,),
            the probability of the chosen action. Continuous: (batch, action_size)
            for both, the density of each action component.
        """
        with torch.no_grad():
            dist = self.network.distribution(self._to_state_batch(states))
            if self.is_action_continuous:
                actions = dist.sample() if use_probability else dist.mean
                probs = torch.exp(dist.log_prob(actions))
            else:
                actions = dist.sample() if use_probability else dist.probs.argmax(dim=-1)
                probs = dist.probs.gather(1, actions.unsqueeze(-1)).squeeze(-1)
        return actions.cpu().numpy(), probs.cpu().numpy()

    def step(self, state, use_probability=True):
        """
        Choose an action for the current state and remember what is needed to record it.

        Returns:
            Action index (discrete) or float32 action vector (continuous)
        """
        self.last_state = flatten_state(state)
        actions, probs = self.evaluate_action(self.last_state, use_probability)
        self.last_value = float(self.evaluate_value(self.last_state)[0])
        self.last_action = np.asarray(actions[0], dtype=np.float32).reshape(-1)
        self.last_action_probs = np.asarray(probs[0], dtype=np.float32).reshape(-1)

        if self.is_action_continuous:
            return self.last_action.copy()
        return int(actions[0])

    def record(self, reward, terminated, truncated=False, next_state=None):
        """
        Record the outcome of the last step.

        Args:
            reward: Reward of the last step
            terminated: The episode reached a terminal state
            truncated: The episode was cut by a time limit
            next_state: Observation after the step, used to bootstrap a
                non-terminal episode end

        Returns:
            True when the episode history was processed into the replay buffer
        """
        if self.last_state is None:
            raise RuntimeError("record() called before step()")
        episode_over = terminated or truncated or self.episode_step + 1 >= self.max_step_horizon
        if episode_over and not terminated and next_state is None:
            raise ValueError("next_state is required to bootstrap a non-terminal episode end")

        self._add_history(self.last_state, reward, self.last_action, self.last_action_probs, self.last_value)
        self.episode_step += 1

        if episode_over:
            next_value = 0.0
            if not terminated:
                next_value = float(self.evaluate_value(flatten_state(next_state))[0])
            self.process_episode_history(next_value)
        return episode_over

    def _add_history(self, state, reward, action, action_probs, value):
        self.states_history.append(state)
        self.rewards_history.append(reward)
        self.actions_history.append(action)
        self.action_probs_history.append(action_probs)
        self.values_history.append(value)

    def process_episode_history(self, next_value):
        """Compute GAE advantages and critic targets for the episode history and store them."""
        if self.states_history:
            advantages, target_values = advantage_targets(
                self.rewards_history, self.values_history,
                self.reward_discount_factor, self.reward_gae_factor, next_value
            )
            self.buffer.add_data(State=np.concatenate(self.states_history),
                                 Action=np.concatenate(self.actions_history),
                                 ActionProb=np.concatenate(self.action_probs_history),
                                 TargetValue=target_values,
                                 Advantage=advantages)

        self.states_history.clear()
        self.rewards_history.clear()
        self.actions_history.clear()
        self.action_probs_history.clear()
        self.values_history.clear()
        self.episode_step = 0

    def clear_data(self):
        self.buffer.clear_data()

    def train_all_data(self, batch_size, epochs):
        """
        Train on every stored record for a number of epochs, reshuffled each epoch.
        A trailing partial batch is dropped.
        """
        if epochs <= 0:
            raise ValueError(f"epochs must be positive, got {epochs}")
        fetches = [(name, 0, name) for name in FIELDS]
        epoch_losses = []
        for _ in range(epochs):
            batches = self.buffer.sample_batches_reordered(batch_size, fetches)
            losses = [self.train_batch(batch['State'], batch['Action'], batch['ActionProb'],
                                       batch['TargetValue'], batch['Advantage'])
                      for batch in batches]
            epoch_losses.append(np.mean(losses))
        self.last_loss = float(np.mean(epoch_losses))
        return self.last_loss

    def train_random_batch(self, batch_size):
        """Train on one batch drawn at random with replacement."""
        fetches = [(name, 0, name) for name in FIELDS]
        samples = self.buffer.random_sample(batch_size, fetches)
        return self.train_batch(samples['State'], samples['Action'], samples['ActionProb'],
                                samples['TargetValue'], samples['Advantage'])

    def train_batch(self, states, actions, action_probs, target_values, advantages):
        """One clipped-surrogate update on flat arrays."""
        state_batch = self._to_state_batch(states)
        action_batch = torch.as_tensor(actions, dtype=torch.float32).view(-1, self.action_dim).to(self.device)
        old_prob_batch = torch.as_tensor(action_probs, dtype=torch.float32).view(-1, self.action_dim).to(self.device)
        target_value_batch = torch.as_tensor(target_values, dtype=torch.float32).view(-1).to(self.device)
        advantage_batch = torch.as_tensor(advantages, dtype=torch.float32).view(-1, 1).to(self.device)

        dist = self.network.distribution(state_batch)
        if self.is_action_continuous:
            action_prob = torch.exp(dist.log_prob(action_batch))
            entropy = dist.entropy().sum(dim=-1).mean()
        else:
            action_prob = dist.probs.gather(1, action_batch.long())
            entropy = dist.entropy().mean()

        # probability ratio per action component, advantages broadcast over components
        prob_ratio = action_prob / (old_prob_batch + PROB_EPS)
        surrogate = prob_ratio * advantage_batch
        clipped_surrogate = torch.clamp(prob_ratio, 1 - self.clip_epsilon, 1 + self.clip_epsilon) * advantage_batch
        policy_loss = -torch.min(surrogate, clipped_surrogate).mean()
        value_loss = nn.MSELoss()(self.network.value(state_batch), target_value_batch)

        loss = policy_loss + self.value_loss_weight * value_loss - self.entropy_loss_weight * entropy

        self.optimizer.zero_grad()
        loss.backward()
        torch.nn.utils.clip_grad_norm_(self.network.parameters(),
                                       max_norm=self.network_params['grad_clip_norm'])
        self.optimizer.step()

        self.last_loss = loss.item()
        return self.last_loss

    def _log_training_progress(self, episode):
        """Log training progress to file."""
        log_file = create_log_file('ppo')
        with open(log_file, 'a') as f:
            f.write(f"[Episode {episode}] [Step {self.global_step}] loss: {self.last_loss:.6f}\n")

    def train(self, env, num_episodes=None, env_name='env', action_low=None, action_high=None,
              save_results=True):
        """
        Main training loop: collect episodes until the buffer is full, then run
        train_all_data and start collecting again.

        Args:
            env: Gymnasium environment
            num_episodes: Episodes to run (if None, use the configured value)
            env_name: Name used for the results directory
            action_low, action_high: Bounds continuous actions are clipped to
            save_results: Write results, curve and weights when done

        Returns:
            Dictionary of training results
        """
        num_episodes = num_episodes or self.training_params['num_episodes']
        rng = np.random.default_rng(self.training_params['env_seed'])
        seeds = rng.integers(0, 10000, size=num_episodes, dtype=int).tolist()

        pbar = tqdm(range(num_episodes), desc='Training PPO')
        for episode in pbar:
            obs, _ = env.reset(seed=seeds[episode])
            done = False
            episode_reward = 0.0

            while not done:
                action = self.step(obs)
                if self.is_action_continuous and action_low is not None:
                    action = np.clip(action, action_low, action_high)
                obs, reward, terminated, truncated, _ = env.step(action)
                episode_reward += float(reward)
                done = self.record(reward, terminated, truncated, next_state=obs)
                self.global_step += 1

            self.train_rewards.append(episode_reward)

            if self.buffer.current_count >= self.buffer.capacity:
                self.train_all_data(self.training_params['batch_size'], self.training_params['epochs'])
                self.clear_data()
                self._log_training_progress(episode + 1)
                pbar.set_postfix(reward=f"{episode_reward:.1f}", loss=f"{self.last_loss:.4f}")
            else:
                pbar.set_postfix(reward=f"{episode_reward:.1f}")

            # Periodic evaluation
            if (episode + 1) % self.training_params['eval_freq'] == 0:
                self._evaluate_policy(env, episode + 1, action_low, action_high)

        results = {
            'train_rewards': self.train_rewards,
            'eval_checkpoints': self.eval_checkpoints,
            'env_name': env_name
        }
        if save_results:
            self._save_results(results, env_name)
        return results

    def _evaluate_policy(self, env, episode, action_low=None, action_high=None):
        """Evaluate the deterministic policy."""
        def select_action(obs):
            actions, _ = self.evaluate_action(flatten_state(obs), use_probability=False)
            if self.is_action_continuous:
                action = actions[0]
                if action_low is not None:
                    action = np.clip(action, action_low, action_high)
                return action
            return int(actions[0])

        rng = np.random.default_rng(self.training_params['env_seed'])
        seeds = rng.integers(0, 10000, size=self.training_params['num_eval_episodes'], dtype=int).tolist()
        eval_result = evaluate_policy(select_action, env,
                                      num_episodes=self.training_params['num_eval_episodes'],
                                      episode_seeds=seeds)
        self.eval_checkpoints[episode] = eval_result
        print(f"[PPO] Episode {episode} Eval: "
              f"Reward={eval_result['mean_reward']:.2f} ± {eval_result['std_reward']:.2f}")

    def _save_results(self, results, env_name):
        """Save training results, training curve and network weights."""
        results_dir = create_results_dir('ppo', env_name)
        os.makedirs(results_dir, exist_ok=True)

        with open(os.path.join(results_dir, 'results.pkl'), 'wb') as f:
            pickle.dump(results, f)

        save_training_curve(self.train_rewards, os.path.join(results_dir, 'training_curve.png'),
                            title=f'PPO Training Reward ({env_name})')
        save_module(os.path.join(results_dir, 'network_parameter', 'ppo_network.pt'), self.network)
        print(f"Results saved to {results_dir}")
        return results_dir

    def set_learning_rate(self, lr):
        set_learning_rate(self.optimizer, lr)

    def save(self):
        return module_to_bytes(self.network)

    def restore(self, data):
        module_from_bytes(self.network, data, self.device)
