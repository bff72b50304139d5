import numpy as np
import pytest
import torch

from dltools.algorithms.gan import TrainerGAN
from dltools.algorithms.learners import adam_learner
from dltools.networks.networks import GANDense
from dltools.utils.errors import InsufficientData, ShapeMismatch


def make_trainer(cpu, noise_size=4, condition_size=2, output_size=3):
    torch.manual_seed(0)
    gan = GANDense(noise_size, condition_size, output_size, generator_hidden_size=16,
                   discriminator_hidden_size=16)
    return TrainerGAN(gan, adam_learner(0.001), adam_learner(0.001), device=cpu,
                      max_data_buffer_count=100, rng=np.random.default_rng(0))


def test_buffer_fields_follow_condition_size(cpu):
    assert set(make_trainer(cpu).buffer.data_infos) == {'Condition', 'Target'}
    assert set(make_trainer(cpu, condition_size=0).buffer.data_infos) == {'Target'}


def test_add_data_and_train_mini_batch(cpu):
    trainer = make_trainer(cpu)
    trainer.add_data(np.ones((20, 2)), np.zeros((20, 3)))
    assert trainer.data_count_stored == 20
    trainer.train_mini_batch(8)
    assert trainer.last_loss_generator is not None
    assert trainer.last_loss_discriminator is not None
    assert np.isfinite(trainer.last_loss_discriminator)


def test_train_mini_batch_returns_losses(cpu):
    trainer = make_trainer(cpu)
    trainer.add_data(np.ones((20, 2)), np.zeros((20, 3)))
    loss_generator, loss_discriminator = trainer.train_mini_batch(8)
    assert loss_generator == trainer.last_loss_generator
    assert loss_discriminator == trainer.last_loss_discriminator
    assert np.isfinite(loss_generator) and np.isfinite(loss_discriminator)


def test_conditional_gan_rejects_missing_conditions(cpu):
    trainer = make_trainer(cpu)
    with pytest.raises(ShapeMismatch):
        trainer.add_data(None, np.zeros((10, 3)))
    assert trainer.data_count_stored == 0


def test_unconditional_gan_ignores_conditions(cpu):
    trainer = make_trainer(cpu, condition_size=0)
    trainer.add_data(None, np.zeros((10, 3)))
    trainer.train_mini_batch(4)
    assert trainer.generate(count=6).shape == (6, 3)


def test_train_mini_batch_on_empty_buffer(cpu):
    with pytest.raises(InsufficientData):
        make_trainer(cpu).train_mini_batch(4)


def test_generate_noise_range(cpu):
    noise = make_trainer(cpu).generate_noise(50)
    assert noise.shape == (50, 4)
    assert noise.dtype == np.float32
    assert noise.min() >= -1 and noise.max() <= 1


def test_generate_count_follows_conditions(cpu):
    trainer = make_trainer(cpu)
    assert trainer.generate(condition=np.zeros((5, 2))).shape == (5, 3)
    noise = np.zeros((2, 4), dtype=np.float32)
    first = trainer.generate(condition=np.ones((2, 2)), noise=noise)
    second = trainer.generate(condition=np.ones((2, 2)), noise=noise)
    np.testing.assert_array_equal(first, second)


def test_discriminator_training_separates_real_from_fake(cpu):
    trainer = make_trainer(cpu, noise_size=2, condition_size=0, output_size=1)
    targets = np.full((64, 1), 3.0, dtype=np.float32)
    trainer.add_data(None, targets)
    for _ in range(200):
        trainer._train_discriminator((torch.as_tensor(trainer.generate_noise(32)), None,
                                      torch.full((32, 1), 3.0)))
    real = trainer.gan.discriminate(torch.full((8, 1), 3.0)).mean().item()
    fake = trainer.gan.discriminate(trainer.gan.generate(torch.as_tensor(trainer.generate_noise(8)))).mean().item()
    assert real > fake


def test_save_and_restore_generator_snapshots(cpu):
    trainer = make_trainer(cpu)
    trainer.add_data(np.ones((20, 2)), np.zeros((20, 3)))
    noise = trainer.generate_noise(3)
    condition = np.ones((3, 2))
    before = trainer.generate(condition, noise)

    trainer.save_generator('start')
    trainer.train_mini_batch(8)
    assert not np.allclose(trainer.generate(condition, noise), before)
    trainer.restore_generator('start')
    np.testing.assert_allclose(trainer.generate(condition, noise), before)


def test_prediction_training_restores_learning_rate(cpu):
    trainer = make_trainer(cpu)
    trainer.use_prediction_in_training = True
    trainer.add_data(np.ones((20, 2)), np.zeros((20, 3)))
    trainer.train_mini_batch(8)
    assert trainer.optimizer_g.param_groups[0]['lr'] == pytest.approx(0.001)
    assert trainer.last_loss_discriminator is not None


def test_set_learning_rates(cpu):
    trainer = make_trainer(cpu)
    trainer.set_learning_rate_generator(0.01)
    trainer.set_learning_rate_discriminator(0.02)
    assert trainer.optimizer_g.param_groups[0]['lr'] == 0.01
    assert trainer.optimizer_d.param_groups[0]['lr'] == 0.02


def test_save_restore_whole_gan(cpu):
    trainer = make_trainer(cpu)
    noise = trainer.generate_noise(2)
    condition = np.zeros((2, 2))
    before = trainer.generate(condition, noise)
    data = trainer.save()
    with torch.no_grad():
        for param in trainer.gan.parameters():
            param.add_(1.0)
    trainer.restore(data)
    np.testing.assert_allclose(trainer.generate(condition, noise), before)
