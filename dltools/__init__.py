"""
dltools
Replay-buffer driven deep learning trainers: deep Q-learning, PPO with GAE,
dense GAN and supervised networks.
"""

__version__ = "1.0.0"

from .configs.config import *
from .networks.networks import *
from .environments.env_utils import *
from .utils.errors import DataBufferError, ShapeMismatch, UnknownField, InsufficientData
from .utils.replay_buffer import DataInfo, Fetch, ReplayBuffer
from .utils.advantage import general_advantage_estimation, advantage_targets, discounted_rewards
from .utils.evaluation import *
from .algorithms.learners import sgd_learner, momentum_sgd_learner, adam_learner
from .algorithms.simple_nn import TrainerSimpleNN
from .algorithms.gan import TrainerGAN
from .algorithms.dql import TrainerDQL
from .algorithms.ppo import TrainerPPO

__all__ = [
    'DataBufferError',
    'ShapeMismatch',
    'UnknownField',
    'InsufficientData',
    'DataInfo',
    'Fetch',
    'ReplayBuffer',
    'general_advantage_estimation',
    'advantage_targets',
    'discounted_rewards',
    'SequentialNetworkDense',
    'ResNodeDense',
    'QNetworkSimple',
    'QNetworkConv',
    'PPONetworkDiscreteSimple',
    'PPONetworkContinuousSimple',
    'GANDense',
    'sgd_learner',
    'momentum_sgd_learner',
    'adam_learner',
    'TrainerSimpleNN',
    'TrainerGAN',
    'TrainerDQL',
    'TrainerPPO',
    'create_environment',
    'get_env_info',
    'flatten_state',
    'evaluate_policy',
]
