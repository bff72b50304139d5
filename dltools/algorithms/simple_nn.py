"""
Supervised trainer for a dense sequential network fed from a replay buffer.
"""

import numpy as np
import torch
import torch.nn as nn

from dltools.configs.config import get_training_params
from dltools.utils.checkpoint import module_from_bytes, module_to_bytes
from dltools.utils.replay_buffer import DataInfo, ReplayBuffer
from dltools.algorithms.learners import set_learning_rate

LOSS_FUNCTIONS = {
    'mse': nn.MSELoss,
    'cross_entropy': nn.CrossEntropyLoss,
}

class TrainerSimpleNN:
    """
    Trains a SequentialNetworkDense on (Input, Target) records stored in a replay buffer.
    """

    def __init__(self, network, learner, device=None, max_data_buffer_count=None, loss='mse', rng=None):
        """
        Initialize the trainer.

        Args:
            network: SequentialNetworkDense (needs input_size and output_size)
            learner: LearnerDef used to build the optimizer
            device: Device to run the network on
            max_data_buffer_count: Replay buffer capacity
            loss: 'mse' or 'cross_entropy' (targets given as class probabilities)
            rng: numpy Generator used for sampling
        """
        if loss not in LOSS_FUNCTIONS:
            raise ValueError(f"Unknown loss '{loss}', expected one of {list(LOSS_FUNCTIONS)}")
        self.device = device if device else torch.device("cuda" if torch.cuda.is_available() else "cpu")
        self.training_params = get_training_params('simple_nn')

        self.network = network.to(self.device)
        self.optimizer = learner.create(self.network.parameters())
        self.loss_fn = LOSS_FUNCTIONS[loss]()

        if max_data_buffer_count is None:
            max_data_buffer_count = self.training_params['buffer_capacity']
        if rng is None:
            rng = np.random.default_rng(self.training_params['batch_seed'])
        self.buffer = ReplayBuffer(max_data_buffer_count,
                                   DataInfo('Input', network.input_size),
                                   DataInfo('Target', network.output_size),
                                   rng=rng)

        self.last_loss = None
        self.last_batch_size = 0

    @property
    def data_count_stored(self):
        return self.buffer.current_count

    def add_data(self, inputs, targets):
        """Append (input, target) records. The buffer checks that the counts agree."""
        self.buffer.add_data(Input=inputs, Target=targets)

    def clear_data(self):
        self.buffer.clear_data()

    def train_mini_batch(self, batch_size):
        """Sample a random minibatch from the buffer and take one optimizer step."""
        samples = self.buffer.random_sample(batch_size, [('Input', 0, 'Input'), ('Target', 0, 'Target')])
        return self.train_batch(samples['Input'], samples['Target'])

    def train_batch(self, inputs, targets):
        """Take one optimizer step on the given flat input and target arrays."""
        input_batch = torch.as_tensor(np.asarray(inputs, dtype=np.float32)).view(-1, self.network.input_size).to(self.device)
        target_batch = torch.as_tensor(np.asarray(targets, dtype=np.float32)).view(-1, self.network.output_size).to(self.device)

        self.network.train()
        output = self.network(input_batch)
        loss = self.loss_fn(output, target_batch)

        self.optimizer.zero_grad()
        loss.backward()
        self.optimizer.step()

        self.last_loss = loss.item()
        self.last_batch_size = input_batch.shape[0]
        return self.last_loss

    def predict(self, inputs):
        """Evaluate the network on flat inputs, returns (batch, output_size) array."""
        input_batch = torch.as_tensor(np.asarray(inputs, dtype=np.float32)).view(-1, self.network.input_size).to(self.device)
        self.network.eval()
        with torch.no_grad():
            output = self.network(input_batch)
        return output.cpu().numpy()

    def set_learning_rate(self, lr):
        set_learning_rate(self.optimizer, lr)

    def save(self):
        return module_to_bytes(self.network)

    def restore(self, data):
        module_from_bytes(self.network, data, self.device)
