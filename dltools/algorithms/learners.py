"""
Learner definitions: small factories that turn a parameter list into a torch optimizer.
"""

import torch


class LearnerDef:
    """Base class. Subclasses create a torch optimizer for the given parameters."""

    def create(self, parameters):
        raise NotImplementedError

class SGDLearnerDef(LearnerDef):
    def __init__(self, learning_rate):
        self.learning_rate = learning_rate

    def create(self, parameters):
        return torch.optim.SGD(parameters, lr=self.learning_rate)

class MomentumSGDLearnerDef(LearnerDef):
    def __init__(self, learning_rate, momentum):
        self.learning_rate = learning_rate
        self.momentum = momentum

    def create(self, parameters):
        return torch.optim.SGD(parameters, lr=self.learning_rate, momentum=self.momentum)

class AdamLearnerDef(LearnerDef):
    def __init__(self, learning_rate=0.001, beta1=0.9, beta2=0.999, epsilon=0.00001):
        self.learning_rate = learning_rate
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon

    def create(self, parameters):
        return torch.optim.Adam(parameters, lr=self.learning_rate,
                                betas=(self.beta1, self.beta2), eps=self.epsilon)

def sgd_learner(learning_rate):
    return SGDLearnerDef(learning_rate)

def momentum_sgd_learner(learning_rate, momentum):
    return MomentumSGDLearnerDef(learning_rate, momentum)

def adam_learner(learning_rate=0.001, beta1=0.9, beta2=0.999, epsilon=0.00001):
    return AdamLearnerDef(learning_rate, beta1, beta2, epsilon)

def set_learning_rate(optimizer, learning_rate):
    """Set the learning rate of every parameter group."""
    for group in optimizer.param_groups:
        group['lr'] = learning_rate

def get_learning_rate(optimizer):
    return optimizer.param_groups[0]['lr']
