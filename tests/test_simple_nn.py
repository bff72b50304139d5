import numpy as np
import pytest
import torch

from dltools.algorithms.learners import adam_learner, sgd_learner
from dltools.algorithms.simple_nn import TrainerSimpleNN
from dltools.networks.networks import SequentialNetworkDense
from dltools.utils.errors import InsufficientData, ShapeMismatch


def make_trainer(cpu, loss='mse', capacity=256):
    torch.manual_seed(0)
    network = SequentialNetworkDense(2, 1, num_layers=1, hidden_size=16)
    return TrainerSimpleNN(network, adam_learner(0.01), device=cpu, max_data_buffer_count=capacity,
                           loss=loss, rng=np.random.default_rng(0))


def linear_data(n, seed=0):
    rng = np.random.default_rng(seed)
    inputs = rng.uniform(-1, 1, size=(n, 2)).astype(np.float32)
    targets = (2 * inputs[:, 0] - inputs[:, 1]).astype(np.float32)
    return inputs, targets


def test_add_data_and_count(cpu):
    trainer = make_trainer(cpu, capacity=10)
    inputs, targets = linear_data(6)
    trainer.add_data(inputs, targets)
    assert trainer.data_count_stored == 6
    trainer.add_data(inputs, targets)
    assert trainer.data_count_stored == 10
    trainer.clear_data()
    assert trainer.data_count_stored == 0


def test_add_data_shape_mismatch(cpu):
    trainer = make_trainer(cpu)
    inputs, targets = linear_data(6)
    with pytest.raises(ShapeMismatch):
        trainer.add_data(inputs, targets[:4])


def test_train_mini_batch_on_empty_buffer(cpu):
    with pytest.raises(InsufficientData):
        make_trainer(cpu).train_mini_batch(8)


def test_training_reduces_loss(cpu):
    trainer = make_trainer(cpu)
    inputs, targets = linear_data(200)
    trainer.add_data(inputs, targets)

    initial = np.mean((trainer.predict(inputs)[:, 0] - targets) ** 2)
    for _ in range(300):
        trainer.train_mini_batch(32)
    final = np.mean((trainer.predict(inputs)[:, 0] - targets) ** 2)

    assert trainer.last_batch_size == 32
    assert trainer.last_loss is not None
    assert final < initial * 0.5


def test_predict_shape(cpu):
    trainer = make_trainer(cpu)
    assert trainer.predict(np.zeros(10, dtype=np.float32)).shape == (5, 1)


def test_cross_entropy_loss(cpu):
    torch.manual_seed(0)
    network = SequentialNetworkDense(2, 3, num_layers=1, hidden_size=8)
    trainer = TrainerSimpleNN(network, sgd_learner(0.1), device=cpu, loss='cross_entropy')
    targets = np.eye(3, dtype=np.float32)[[0, 1, 2, 1]]
    loss = trainer.train_batch(np.zeros((4, 2), dtype=np.float32), targets)
    assert loss > 0


def test_unknown_loss(cpu):
    with pytest.raises(ValueError):
        TrainerSimpleNN(SequentialNetworkDense(2, 1), sgd_learner(0.1), device=cpu, loss='hinge')


def test_save_restore_and_learning_rate(cpu):
    trainer = make_trainer(cpu)
    inputs, targets = linear_data(64)
    snapshot = trainer.save()
    before = trainer.predict(inputs)

    trainer.set_learning_rate(0.1)
    assert trainer.optimizer.param_groups[0]['lr'] == 0.1
    trainer.train_batch(inputs, targets)
    assert not np.allclose(trainer.predict(inputs), before)

    trainer.restore(snapshot)
    np.testing.assert_allclose(trainer.predict(inputs), before)
