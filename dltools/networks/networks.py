"""
Unified network architectures for the dltools trainers.
Contains the dense sequential builder, Q-networks, PPO actor-critics and the dense GAN.
"""

import math

import numpy as np
import torch
import torch.nn as nn
from torch.distributions import Categorical, Normal

ACTIVATIONS = {
    'relu': nn.ReLU,
    'tanh': nn.Tanh,
    'sigmoid': nn.Sigmoid,
    'selu': nn.SELU,
    'leaky_relu': nn.LeakyReLU,
}

def make_activation(name):
    """Build an activation module from its name. None or 'none' means identity."""
    if name is None or name == 'none':
        return None
    if name not in ACTIVATIONS:
        raise ValueError(f"Unknown activation '{name}', expected one of {list(ACTIVATIONS)}")
    return ACTIVATIONS[name]()

class ResNodeDense(nn.Module):
    """
    Residual node: two dense layers of equal width with a skip connection,
    out = act(x + f(x)).
    """
    def __init__(self, hidden_size, activation='relu', normalization=None, dropout=0.0):
        super(ResNodeDense, self).__init__()
        layers = [nn.Linear(hidden_size, hidden_size)]
        layers.extend(_normalization_layers(normalization, hidden_size))
        act = make_activation(activation)
        if act is not None:
            layers.append(act)
        if dropout > 0:
            layers.append(nn.Dropout(dropout))
        layers.append(nn.Linear(hidden_size, hidden_size))
        layers.extend(_normalization_layers(normalization, hidden_size))
        self.block = nn.Sequential(*layers)
        self.activation = make_activation(activation)

    def forward(self, x):
        out = x + self.block(x)
        if self.activation is not None:
            out = self.activation(out)
        return out

def _normalization_layers(normalization, size):
    if normalization == 'batch':
        return [nn.BatchNorm1d(size)]
    if normalization == 'layer':
        return [nn.LayerNorm(size)]
    if normalization is not None:
        raise ValueError(f"Unknown normalization '{normalization}'")
    return []

class SequentialNetworkDense(nn.Module):
    """
    Stack of dense hidden layers followed by a dense output layer.
    With use_residual, the input is projected to hidden_size once and each
    hidden layer is a ResNodeDense.
    Input: (batch, input_size)
    Output: (batch, output_size)
    """
    def __init__(self, input_size, output_size, num_layers=2, hidden_size=64, activation='relu',
                 normalization=None, dropout=0.0, initial_weight_scale=None,
                 output_activation=None, output_bias=True, use_residual=False):
        super(SequentialNetworkDense, self).__init__()
        self.input_size = input_size
        self.output_size = output_size
        self.use_residual = use_residual

        layers = []
        last_size = input_size
        if use_residual and num_layers > 0:
            layers.append(nn.Linear(input_size, hidden_size))
            act = make_activation(activation)
            if act is not None:
                layers.append(act)
            for _ in range(num_layers):
                layers.append(ResNodeDense(hidden_size, activation, normalization, dropout))
            last_size = hidden_size
        else:
            for _ in range(num_layers):
                layers.append(nn.Linear(last_size, hidden_size))
                layers.extend(_normalization_layers(normalization, hidden_size))
                act = make_activation(activation)
                if act is not None:
                    layers.append(act)
                if dropout > 0:
                    layers.append(nn.Dropout(dropout))
                last_size = hidden_size
        self.hidden_layers = nn.Sequential(*layers)

        self.output_layer = nn.Linear(last_size, output_size, bias=output_bias)
        if initial_weight_scale:
            nn.init.uniform_(self.output_layer.weight, -initial_weight_scale, initial_weight_scale)
            if output_bias:
                nn.init.zeros_(self.output_layer.bias)
        self.output_activation = make_activation(output_activation)

    def forward(self, x):
        out = self.output_layer(self.hidden_layers(x))
        if self.output_activation is not None:
            out = self.output_activation(out)
        return out

class QNetworkSimple(nn.Module):
    """
    Dueling Q-network. The trunk output is split in two halves feeding an
    advantage stream and a value stream: Q = V + (A - mean(A)).
    Input: (batch, state_size)
    Output: Q-values (batch, action_size)
    """
    def __init__(self, state_size, action_size, num_layers=2, hidden_size=64, initial_weight_scale=0.01):
        super(QNetworkSimple, self).__init__()
        if hidden_size < 2:
            raise ValueError("hidden_size must be at least 2 to split value and advantage streams")
        self.state_size = state_size
        self.action_size = action_size
        self.split = hidden_size // 2

        self.trunk = SequentialNetworkDense(state_size, hidden_size, num_layers, hidden_size,
                                            activation='relu', initial_weight_scale=initial_weight_scale,
                                            output_bias=False)
        self.advantage_fc = nn.Linear(self.split, action_size, bias=False)
        self.value_fc = nn.Linear(hidden_size - self.split, 1, bias=False)
        nn.init.uniform_(self.advantage_fc.weight, -initial_weight_scale, initial_weight_scale)
        nn.init.uniform_(self.value_fc.weight, -initial_weight_scale, initial_weight_scale)

    def forward(self, state):
        mid = self.trunk(state)
        advantage = self.advantage_fc(mid[:, :self.split])
        value = self.value_fc(mid[:, self.split:])
        return value + advantage - advantage.mean(dim=1, keepdim=True)

class QNetworkConv(nn.Module):
    """
    Convolutional Q-network: Conv2d + SELU blocks (each optionally followed by
    2x2 max pooling), flattened into a dense head without output bias.
    Input: (batch, channels, height, width) or flat (batch, state_size)
    Output: Q-values (batch, action_size)
    """
    def __init__(self, input_shape, action_size, filter_sizes=(3, 3), filter_depths=(16, 32),
                 strides=(1, 1), pooling=(False, False), dense_layers=1, dense_hidden_size=64,
                 initial_weight_scale=0.01):
        super(QNetworkConv, self).__init__()
        if not (len(filter_sizes) == len(filter_depths) == len(strides) == len(pooling)):
            raise ValueError("filter_sizes, filter_depths, strides and pooling must have the same length")
        self.input_shape = tuple(int(d) for d in input_shape)
        if len(self.input_shape) != 3:
            raise ValueError(f"input_shape must be (channels, height, width), got {input_shape}")
        self.state_size = int(np.prod(self.input_shape))
        self.action_size = action_size

        layers = []
        in_channels = self.input_shape[0]
        for size, depth, stride, pool in zip(filter_sizes, filter_depths, strides, pooling):
            conv = nn.Conv2d(in_channels, depth, size, stride=stride, padding=size // 2)
            # SELU expects fan-in scaled weights
            nn.init.normal_(conv.weight, 0.0, math.sqrt(1.0 / (in_channels * size * size)))
            nn.init.zeros_(conv.bias)
            layers.append(conv)
            layers.append(nn.SELU())
            if pool:
                layers.append(nn.MaxPool2d(2, 2))
            in_channels = depth
        self.conv_layers = nn.Sequential(*layers)

        with torch.no_grad():
            flat_size = self.conv_layers(torch.zeros(1, *self.input_shape)).numel()
        self.dense = SequentialNetworkDense(flat_size, action_size, dense_layers, dense_hidden_size,
                                            activation='relu', initial_weight_scale=initial_weight_scale,
                                            output_bias=False)

    def forward(self, state):
        x = state.view(-1, *self.input_shape)
        return self.dense(torch.flatten(self.conv_layers(x), start_dim=1))

class PPONetworkDiscreteSimple(nn.Module):
    """
    Actor-critic for discrete actions: softmax policy network and separate value network.
    """
    is_action_continuous = False

    def __init__(self, state_size, action_size, num_layers=2, hidden_size=64, initial_weight_scale=0.01):
        super(PPONetworkDiscreteSimple, self).__init__()
        self.state_size = state_size
        self.action_size = action_size
        self.policy_network = SequentialNetworkDense(state_size, action_size, num_layers, hidden_size,
                                                     activation='tanh', initial_weight_scale=initial_weight_scale)
        self.value_network = SequentialNetworkDense(state_size, 1, num_layers, hidden_size,
                                                    activation='tanh', initial_weight_scale=initial_weight_scale)

    def policy(self, state):
        """Action probabilities (batch, action_size)."""
        return torch.softmax(self.policy_network(state), dim=-1)

    def value(self, state):
        """State values (batch,)."""
        return self.value_network(state).squeeze(-1)

    def distribution(self, state):
        return Categorical(probs=self.policy(state))

class PPONetworkContinuousSimple(nn.Module):
    """
    Actor-critic for continuous actions: Gaussian policy with a state independent
    log variance parameter, and separate value network.
    """
    is_action_continuous = True

    def __init__(self, state_size, action_size, num_layers=2, hidden_size=64, initial_weight_scale=0.01):
        super(PPONetworkContinuousSimple, self).__init__()
        self.state_size = state_size
        self.action_size = action_size
        self.mean_network = SequentialNetworkDense(state_size, action_size, num_layers, hidden_size,
                                                   activation='tanh', initial_weight_scale=initial_weight_scale)
        self.log_sigma_sq = nn.Parameter(torch.zeros(action_size))
        self.value_network = SequentialNetworkDense(state_size, 1, num_layers, hidden_size,
                                                    activation='tanh', initial_weight_scale=initial_weight_scale)

    def policy(self, state):
        """Mean (batch, action_size) and variance (action_size,) of the action distribution."""
        return self.mean_network(state), torch.exp(self.log_sigma_sq)

    def value(self, state):
        """State values (batch,)."""
        return self.value_network(state).squeeze(-1)

    def distribution(self, state):
        mean, variance = self.policy(state)
        return Normal(mean, torch.sqrt(variance).expand_as(mean))

class GANDense(nn.Module):
    """
    Dense generator and discriminator, optionally conditional.
    Generator input: noise and/or condition. Discriminator input: data (+ condition).
    """
    def __init__(self, noise_size, condition_size, output_size, generator_hidden_size=64,
                 generator_layers=2, discriminator_hidden_size=64, discriminator_layers=2):
        super(GANDense, self).__init__()
        if noise_size <= 0 and condition_size <= 0:
            raise ValueError("At least one of noise_size or condition_size must be positive")
        if output_size <= 0:
            raise ValueError("output_size must be positive")
        self.noise_size = noise_size
        self.condition_size = condition_size
        self.output_size = output_size

        self.generator = SequentialNetworkDense(noise_size + condition_size, output_size,
                                                generator_layers, generator_hidden_size, activation='relu')
        self.discriminator = SequentialNetworkDense(output_size + condition_size, 1,
                                                    discriminator_layers, discriminator_hidden_size,
                                                    activation='relu', output_activation='sigmoid')

    def _join(self, first, condition):
        if self.condition_size > 0:
            if first is None:
                return condition
            return torch.cat([first, condition], dim=1)
        return first

    def generate(self, noise=None, condition=None):
        return self.generator(self._join(noise if self.noise_size > 0 else None, condition))

    def discriminate(self, data, condition=None):
        """Probability (batch,) that data is real."""
        return self.discriminator(self._join(data, condition)).squeeze(-1)
