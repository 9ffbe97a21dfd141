import torch
import torch.nn as nn
from torchvision import models
from torchvision.models import ResNet18_Weights


FEATURE_LAYERS = ('logits', 'pool')


def resolve_weights(name):
    """Map a CLI weights name ('default', 'v1', 'none') to a torchvision enum or None."""
    name = (name or 'none').lower()
    if name == 'none':
        return None
    if name == 'v1':
        return ResNet18_Weights.IMAGENET1K_V1
    if name == 'default':
        return ResNet18_Weights.DEFAULT
    raise ValueError(f"Unknown weights '{name}' (expected 'default', 'v1' or 'none')")


class EmbeddingClassifier(nn.Module):
    """Frozen ResNet-18 embedding network with a trainable linear head.

    feature_layer='logits' feeds the 1000-d pre-softmax ImageNet scores to the head,
    feature_layer='pool' replaces the backbone fc and feeds the 512-d pooled features.
    """

    def __init__(self, num_classes, weights=None, feature_layer='logits'):
        super().__init__()
        if feature_layer not in FEATURE_LAYERS:
            raise ValueError(f'feature_layer must be one of {FEATURE_LAYERS}, got: {feature_layer}')
        self.feature_layer = feature_layer
        self.backbone = models.resnet18(weights=weights)
        if feature_layer == 'pool':
            in_f = self.backbone.fc.in_features
            self.backbone.fc = nn.Identity()
        else:
            in_f = self.backbone.fc.out_features
        for p in self.backbone.parameters():
            p.requires_grad = False
        self.backbone.eval()
        self.head = nn.Linear(in_f, num_classes)

    @property
    def embedding_dim(self):
        return self.head.in_features

    def train(self, mode=True):
        super().train(mode)
        # batchnorm statistics stay frozen with the weights
        self.backbone.eval()
        return self

    def embed(self, x):
        with torch.no_grad():
            return self.backbone(x)

    def forward(self, x):
        return self.head(self.embed(x))
