import os
import argparse
import math
from dataclasses import dataclass
from typing import List

import torch

from imageclassifier.classification.dataset import make_tag_dataloaders, make_folder_dataloaders
from imageclassifier.classification.infer import load_checkpoint
from imageclassifier.shared.console import format_table, format_score
from imageclassifier.shared.train_args import add_data_args, DEFAULT_CHECKPOINT
from imageclassifier.utils import select_device


@dataclass
class ClassificationMetrics:
    log_loss: float
    per_class_log_loss: List[float]
    accuracy: float
    per_class_accuracy: List[float]
    total: int


def compute_metrics(probs, labels, classes, eps=1e-15):
    """Multiclass log-loss and accuracy from predicted probabilities.

    Args:
        probs: (N, C) tensor of class probabilities
        labels: (N,) tensor of true class indices
        classes: class names, len C
        eps: probabilities are clipped to [eps, 1 - eps] before the log

    Per-class values are nan for classes with no samples.
    """
    probs = torch.as_tensor(probs, dtype=torch.float64)
    labels = torch.as_tensor(labels, dtype=torch.long)
    total = labels.numel()
    if total == 0:
        nan_list = [math.nan] * len(classes)
        return ClassificationMetrics(math.nan, nan_list, math.nan, list(nan_list), 0)

    p_true = probs[torch.arange(total), labels].clamp(eps, 1 - eps)
    losses = -torch.log(p_true)
    correct = probs.argmax(dim=1) == labels

    per_class_loss = []
    per_class_acc = []
    for i in range(len(classes)):
        mask = labels == i
        if mask.any():
            per_class_loss.append(losses[mask].mean().item())
            per_class_acc.append(correct[mask].double().mean().item())
        else:
            per_class_loss.append(math.nan)
            per_class_acc.append(math.nan)

    return ClassificationMetrics(
        log_loss=losses.mean().item(),
        per_class_log_loss=per_class_loss,
        accuracy=correct.double().mean().item(),
        per_class_accuracy=per_class_acc,
        total=total,
    )


def predictions_table(paths, probs, classes):
    """Table of (image, predicted label, top score) rows."""
    probs = torch.as_tensor(probs)
    rows = []
    if len(paths):
        scores, idx = probs.max(dim=1)
        for path, s, i in zip(paths, scores.tolist(), idx.tolist()):
            rows.append([os.path.basename(path), classes[i], format_score(s)])
    return format_table(['Image', 'Predicted Classified Label', 'Score'], rows)


def print_metrics(metrics, classes):
    print(f'LogLoss is: {metrics.log_loss}')
    print(f'PerClassLogLoss is: {" , ".join(str(v) for v in metrics.per_class_log_loss)}')
    print(f'Samples: {metrics.total}  Acc: {metrics.accuracy:.4f}')
    print('Per-class accuracy:')
    for cls, acc in zip(classes, metrics.per_class_accuracy):
        if not math.isnan(acc):
            print(f'  {cls}: {acc:.3f}')


def collect_probabilities(model, loader, device):
    """Run a model over a loader; returns (probs, labels, paths)."""
    model.eval()
    all_probs, all_labels, all_paths = [], [], []
    with torch.no_grad():
        for imgs, labels, paths in loader:
            outputs = model(imgs.to(device))
            all_probs.append(torch.softmax(outputs, dim=1).cpu())
            all_labels.append(labels)
            all_paths.extend(paths)
    if not all_probs:
        return torch.empty(0, 0), torch.empty(0, dtype=torch.long), []
    return torch.cat(all_probs), torch.cat(all_labels), all_paths


def evaluate_checkpoint(ckpt_path, images_dir=None, train_tags=None, test_tags=None, data_root=None,
                        batch_size=16, val_split=0.2, min_count=1, device='cpu'):
    """Score a saved checkpoint on the held-out set and print the results."""
    model, classes, img_size = load_checkpoint(ckpt_path, device=device)
    if data_root is not None:
        _, test_loader, data_classes = make_folder_dataloaders(data_root, batch_size=batch_size, img_size=img_size,
                                                               val_split=val_split, min_count=min_count)
    else:
        _, test_loader, data_classes = make_tag_dataloaders(images_dir, train_tags, test_tags,
                                                            batch_size=batch_size, img_size=img_size)
    if list(data_classes) != list(classes):
        raise ValueError(f'Checkpoint classes {classes} do not match dataset classes {data_classes}')

    probs, labels, paths = collect_probabilities(model, test_loader, device)
    print('Prediction with test data.')
    print(predictions_table(paths, probs, classes))
    metrics = compute_metrics(probs, labels, classes)
    print_metrics(metrics, classes)
    return metrics


def main(argv=None):
    parser = argparse.ArgumentParser(description='Evaluate a trained checkpoint on the test tags')
    parser.add_argument('--ckpt', default=DEFAULT_CHECKPOINT)
    parser.add_argument('--batch', type=int, default=16)
    parser.add_argument('--device', default=None)
    add_data_args(parser)
    args = parser.parse_args(argv)

    device = select_device(args.device)
    evaluate_checkpoint(args.ckpt, images_dir=args.images, train_tags=args.train_tags, test_tags=args.test_tags,
                        data_root=args.data, batch_size=args.batch, val_split=args.val_split,
                        min_count=args.min_count, device=device)


if __name__ == '__main__':
    main()
