"""
GAN trainer for the dense (optionally conditional) generative adversarial network.
"""

import copy

import numpy as np
import torch
import torch.nn as nn

from dltools.configs.config import get_training_params, get_algorithm_params
from dltools.utils.checkpoint import module_from_bytes, module_to_bytes
from dltools.utils.replay_buffer import DataInfo, ReplayBuffer
from dltools.algorithms.learners import set_learning_rate

EPS = 0.00001

class TrainerGAN:
    """
    Trains the generator and discriminator of a GANDense from target samples in a replay buffer.
    """

    def __init__(self, gan, generator_learner, discriminator_learner, device=None,
                 max_data_buffer_count=None, generator_l2_loss_factor=None, rng=None):
        """
        Initialize the GAN trainer.

        Args:
            gan: GANDense model
            generator_learner: LearnerDef for the generator
            discriminator_learner: LearnerDef for the discriminator
            device: Device to run networks on
            max_data_buffer_count: Replay buffer capacity
            generator_l2_loss_factor: Weight of the L2 loss between generated and target data
            rng: numpy Generator used for sampling and noise
        """
        self.device = device if device else torch.device("cuda" if torch.cuda.is_available() else "cpu")
        self.training_params = get_training_params('gan')
        self.algorithm_params = get_algorithm_params('gan')

        self.gan = gan.to(self.device)
        self.optimizer_g = generator_learner.create(self.gan.generator.parameters())
        self.optimizer_d = discriminator_learner.create(self.gan.discriminator.parameters())
        self.learning_rate_generator = self.optimizer_g.param_groups[0]['lr']
        self.learning_rate_discriminator = self.optimizer_d.param_groups[0]['lr']

        if generator_l2_loss_factor is None:
            generator_l2_loss_factor = self.algorithm_params['generator_l2_loss_factor']
        self.generator_l2_loss_factor = generator_l2_loss_factor
        self.use_prediction_in_training = self.algorithm_params['use_prediction_in_training']

        self.rng = rng if rng is not None else np.random.default_rng(self.training_params['batch_seed'])
        if max_data_buffer_count is None:
            max_data_buffer_count = self.training_params['buffer_capacity']
        data_infos = []
        if gan.condition_size > 0:
            data_infos.append(DataInfo('Condition', gan.condition_size))
        data_infos.append(DataInfo('Target', gan.output_size))
        self.buffer = ReplayBuffer(max_data_buffer_count, *data_infos, rng=self.rng)

        self.saved_generators = {}
        self.last_loss_generator = None
        self.last_loss_discriminator = None

    @property
    def data_count_stored(self):
        return self.buffer.current_count

    def add_data(self, conditions, targets):
        """Append training samples. conditions is ignored for an unconditional GAN."""
        data = {'Target': targets}
        if self.gan.condition_size > 0:
            data['Condition'] = conditions
        self.buffer.add_data(data)

    def clear_data(self):
        self.buffer.clear_data()

    def generate_noise(self, count):
        """Uniform white noise in [-1, 1], shape (count, noise_size)."""
        return self.rng.uniform(-1, 1, size=(count, self.gan.noise_size)).astype(np.float32)

    def train_mini_batch(self, batch_size):
        """Sample a random minibatch and update both networks. Returns (generator loss, discriminator loss)."""
        fetches = [('Target', 0, 'Target')]
        if self.gan.condition_size > 0:
            fetches.append(('Condition', 0, 'Condition'))
        samples = self.buffer.random_sample(batch_size, fetches)
        self.train_batch(self.generate_noise(batch_size), samples.get('Condition'), samples['Target'])
        return self.last_loss_generator, self.last_loss_discriminator

    def train_batch(self, noises, conditions, targets):
        """Update generator and discriminator on one batch of flat arrays."""
        target_batch = torch.as_tensor(np.asarray(targets, dtype=np.float32)).view(-1, self.gan.output_size).to(self.device)
        batch_size = target_batch.shape[0]
        noise_batch = None
        condition_batch = None
        if self.gan.noise_size > 0:
            noise_batch = torch.as_tensor(np.asarray(noises, dtype=np.float32)).view(batch_size, -1).to(self.device)
        if self.gan.condition_size > 0:
            condition_batch = torch.as_tensor(np.asarray(conditions, dtype=np.float32)).view(batch_size, -1).to(self.device)

        batch = (noise_batch, condition_batch, target_batch)
        if self.use_prediction_in_training:
            self._train_with_prediction(batch)
        else:
            self._train_generator(batch)
            self._train_discriminator(batch)

    def _train_generator(self, batch):
        noise, condition, target = batch
        fake = self.gan.generate(noise, condition)
        loss_gan = (1 - torch.log(self.gan.discriminate(fake, condition) + EPS)).mean()
        loss = loss_gan + self.generator_l2_loss_factor * nn.functional.mse_loss(fake, target)

        self.optimizer_g.zero_grad()
        loss.backward()
        self.optimizer_g.step()
        self.last_loss_generator = loss.item()

    def _train_discriminator(self, batch):
        noise, condition, target = batch
        with torch.no_grad():
            fake = self.gan.generate(noise, condition)
        real_prob = self.gan.discriminate(target, condition)
        fake_prob = self.gan.discriminate(fake, condition)
        loss = -(torch.log(real_prob + EPS) + torch.log(1 - fake_prob + EPS)).mean()

        self.optimizer_d.zero_grad()
        loss.backward()
        self.optimizer_d.step()
        self.last_loss_discriminator = loss.item()

    def _train_with_prediction(self, batch):
        """
        Prediction step: the discriminator is trained against the generator's
        predicted next parameters (one step ahead), then the generator is put back
        to its regular one-step update.
        """
        self.save_generator(0)
        self._train_generator(batch)
        self.save_generator(1)
        self.restore_generator(0)
        set_learning_rate(self.optimizer_g, self.learning_rate_generator * 2)
        self._train_generator(batch)
        self._train_discriminator(batch)
        self.restore_generator(1)
        set_learning_rate(self.optimizer_g, self.learning_rate_generator)

    def save_generator(self, key):
        """Snapshot generator parameters and optimizer state under key."""
        self.saved_generators[key] = (
            copy.deepcopy(self.gan.generator.state_dict()),
            copy.deepcopy(self.optimizer_g.state_dict())
        )

    def restore_generator(self, key):
        params, optimizer_state = self.saved_generators[key]
        self.gan.generator.load_state_dict(params)
        self.optimizer_g.load_state_dict(optimizer_state)

    def generate(self, condition=None, noise=None, count=1):
        """Generate samples, returns (count, output_size) array."""
        noise_batch = None
        condition_batch = None
        if self.gan.condition_size > 0:
            condition_batch = torch.as_tensor(np.asarray(condition, dtype=np.float32)).view(-1, self.gan.condition_size).to(self.device)
            count = condition_batch.shape[0]
        if self.gan.noise_size > 0:
            if noise is None:
                noise = self.generate_noise(count)
            noise_batch = torch.as_tensor(np.asarray(noise, dtype=np.float32)).view(-1, self.gan.noise_size).to(self.device)
        with torch.no_grad():
            return self.gan.generate(noise_batch, condition_batch).cpu().numpy()

    def set_learning_rate_generator(self, lr):
        self.learning_rate_generator = lr
        set_learning_rate(self.optimizer_g, lr)

    def set_learning_rate_discriminator(self, lr):
        self.learning_rate_discriminator = lr
        set_learning_rate(self.optimizer_d, lr)

    def save(self):
        return module_to_bytes(self.gan)

    def restore(self, data):
        module_from_bytes(self.gan, data, self.device)
